"""Two-phase resumable upload for image attachments."""

from dataclasses import dataclass

import aiohttp

from ...core.exceptions import UploadFailedException, UploadInitFailedException
from ...core.log import log, mask
from ...core.session import CookieStore
from .schema import (
    DEFAULT_ENDPOINTS,
    FORM_CONTENT_TYPE,
    UPLOAD_TENANT,
    UPLOAD_URL_HEADER,
    Endpoints,
    browser_headers,
)


@dataclass(frozen=True)
class UploadedAttachment:
    storage_ref: str
    file_name: str
    mime_type: str


async def upload_attachment(
    http: aiohttp.ClientSession,
    store: CookieStore,
    data: bytes,
    file_name: str,
    mime_type: str,
    push_id: str | None = None,
    client_context: str | None = None,
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    timeout: float = 30,
) -> UploadedAttachment:
    """Upload one file and return its opaque storage reference.

    Phase 1 declares the upload and receives a continuation URL; phase 2 sends
    the whole payload to that URL in a single upload+finalize call.
    """
    log(f"Uploading {file_name} ({len(data) / 1024:.1f} KB, {mime_type})...", "↑")
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    base_headers = browser_headers(store.as_header_string(), endpoints)

    init_headers = {
        **base_headers,
        "X-Goog-Upload-Protocol": "resumable",
        "X-Goog-Upload-Command": "start",
        "X-Goog-Upload-Header-Content-Length": str(len(data)),
        "X-Tenant-Id": UPLOAD_TENANT,
        "Content-Type": FORM_CONTENT_TYPE,
    }
    if push_id:
        init_headers["Push-ID"] = push_id
    if client_context:
        init_headers["X-Client-Pctx"] = client_context

    async with http.post(
        endpoints.upload_url, headers=init_headers, data=f"File name: {file_name}", timeout=client_timeout
    ) as res:
        if not 200 <= res.status < 300:
            raise UploadInitFailedException(file_name, res.status, await res.text())
        upload_url = res.headers.get(UPLOAD_URL_HEADER)

    if not upload_url:
        raise UploadInitFailedException(file_name, reason="No upload URL returned from init phase")

    finalize_headers = {
        **base_headers,
        "X-Goog-Upload-Command": "upload, finalize",
        "X-Goog-Upload-Offset": "0",
        "X-Tenant-Id": UPLOAD_TENANT,
        "Content-Type": FORM_CONTENT_TYPE,
    }
    async with http.post(upload_url, headers=finalize_headers, data=data, timeout=client_timeout) as res:
        body = await res.text()
        if not 200 <= res.status < 300:
            raise UploadFailedException(file_name, res.status, body)

    storage_ref = body.strip()
    log(f"Uploaded -> {mask(storage_ref, 60)}", "✓")
    return UploadedAttachment(storage_ref=storage_ref, file_name=file_name, mime_type=mime_type)
