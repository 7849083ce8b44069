"""Full-size image RPC (the second step after StreamGenerate)."""

from urllib.parse import urlencode

import aiohttp

from ...core.debug import dump_protocol_failure
from ...core.exceptions import UpscaleFailedException, UpscaleParseFailedException
from ...core.log import debug_log, log, mask
from ...core.session import CookieStore
from ...core.utils import request_id, request_token
from .schema import (
    COMMON_EXT_HEADERS,
    DEFAULT_ENDPOINTS,
    FORM_CONTENT_TYPE,
    FULL_SIZE_SUFFIX,
    GENERATE_EXT_HEADER,
    UPSCALE_EXT_HEADER_VALUE,
    UPSCALE_RPC_ID,
    Endpoints,
    UpscaleRequest,
    browser_headers,
    encode_upscale_request,
    source_path,
)
from .stream import iter_payloads
from .tokens import SessionTokens


def decode_upscale_response(text: str) -> str:
    """Return the full-size URL with the download suffix applied."""
    for entry, payload in iter_payloads(text):
        if len(entry) < 2 or entry[1] != UPSCALE_RPC_ID:
            continue
        if isinstance(payload, list) and payload and isinstance(payload[0], str) and payload[0]:
            return f"{payload[0]}{FULL_SIZE_SUFFIX}"

    error = UpscaleParseFailedException(text)
    dump_protocol_failure("upscale", error, text)
    raise error


async def request_full_size(
    http: aiohttp.ClientSession,
    store: CookieStore,
    tokens: SessionTokens,
    image_token: str,
    response_chunk_id: str,
    conversation_id: str,
    response_id: str,
    prompt: str,
    locale: str = "en",
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    timeout: float = 30,
) -> str:
    """Ask for a full-resolution rendition of a generated image and return its URL."""
    request = UpscaleRequest(
        image_token=image_token,
        response_chunk_id=response_chunk_id,
        conversation_id=conversation_id,
        response_id=response_id,
        prompt=prompt,
        request_token=request_token(),
    )
    query = urlencode(
        {
            "rpcids": UPSCALE_RPC_ID,
            "source-path": source_path(conversation_id),
            "bl": tokens.build_id,
            "f.sid": tokens.session_id,
            "hl": locale,
            "_reqid": request_id(),
            "rt": "c",
        }
    )
    headers = {
        **browser_headers(store.as_header_string(), endpoints),
        **COMMON_EXT_HEADERS,
        "Content-Type": FORM_CONTENT_TYPE,
        GENERATE_EXT_HEADER: UPSCALE_EXT_HEADER_VALUE,
    }
    form = {"f.req": encode_upscale_request(request), "at": tokens.csrf_token}

    log("Requesting full-size URL...", "→")
    debug_log(f"imageToken: {mask(image_token, 40)}")
    debug_log(f"responseChunkId: {response_chunk_id}, responseId: {response_id}")
    debug_log(f"conversationId: {conversation_id}")

    async with http.post(
        f"{endpoints.batchexecute_url}?{query}",
        headers=headers,
        data=urlencode(form),
        timeout=aiohttp.ClientTimeout(total=timeout),
    ) as res:
        text = await res.text()
        if not 200 <= res.status < 300:
            raise UpscaleFailedException(res.status, text)

    url = decode_upscale_response(text)
    log(f"Full-size URL: {mask(url, 120)}", "✓")
    return url
