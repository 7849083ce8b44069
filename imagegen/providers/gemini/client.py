"""High-level Gemini image generation client.

Ties together token extraction, uploads, the StreamGenerate call, the
full-size RPC and image downloads around one shared cookie store and HTTP
session.
"""

import asyncio
from dataclasses import dataclass, field

import aiohttp

from ...core.config import get_setting
from ...core.exceptions import AuthExpiredException, ImageGenException
from ...core.log import log, log_context
from ...core.session import CookieStore
from ...core.utils import DEFAULT_MIME, guess_mime, log_media_capture
from .fetch import fetch_image
from .schema import DEFAULT_ENDPOINTS, AttachmentRef, Endpoints
from .stream import ParsedImage, ParsedResponse, send_generate
from .tokens import SessionTokens, extract_tokens
from .upload import UploadedAttachment, upload_attachment
from .upscale import request_full_size


@dataclass(frozen=True)
class AttachmentInput:
    data: bytes
    file_name: str
    mime_type: str = ""

    def __post_init__(self):
        if not self.mime_type:
            object.__setattr__(self, "mime_type", guess_mime(self.file_name, DEFAULT_MIME))


@dataclass(frozen=True)
class AttachmentError:
    file_name: str
    error: str


@dataclass
class GenerationResult:
    response: ParsedResponse
    tokens: SessionTokens
    attachment_errors: list[AttachmentError] = field(default_factory=list)

    @property
    def images(self) -> tuple[ParsedImage, ...]:
        return self.response.images


@dataclass
class DownloadOutcome:
    image: ParsedImage
    data: bytes | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None


class GeminiClient:
    """Session-scoped client. Use as ``async with GeminiClient(store) as client``.

    An externally owned ``aiohttp.ClientSession`` can be passed in; otherwise
    one is created with a dummy cookie jar so only the store's cookies are sent.
    """

    def __init__(
        self,
        store: CookieStore,
        endpoints: Endpoints = DEFAULT_ENDPOINTS,
        http: aiohttp.ClientSession | None = None,
        locale: str | None = None,
        model_id: str | None = None,
    ):
        self.store = store
        self.endpoints = endpoints
        self.locale = locale or get_setting("locale", "en")
        self.model_id = model_id or get_setting("model_id")
        self._http = http
        self._owns_http = http is None

    async def __aenter__(self):
        if self._http is None:
            self._http = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise RuntimeError("GeminiClient used outside 'async with'")
        return self._http

    def require_auth(self):
        if not self.store.has_required_cookies():
            raise AuthExpiredException("Missing __Secure-1PSID / __Secure-1PSIDTS cookies")

    async def extract_tokens(self) -> SessionTokens:
        return await extract_tokens(
            self.http, self.store, self.endpoints, timeout=float(get_setting("token_timeout", 30))
        )

    async def _upload(self, tokens: SessionTokens, attachment: AttachmentInput) -> UploadedAttachment:
        return await upload_attachment(
            self.http,
            self.store,
            attachment.data,
            attachment.file_name,
            attachment.mime_type,
            push_id=tokens.push_id,
            client_context=tokens.client_context,
            endpoints=self.endpoints,
            timeout=float(get_setting("upload_timeout", 30)),
        )

    async def generate(self, prompt: str, attachments: list[AttachmentInput] | None = None) -> GenerationResult:
        """Run one generation. Failed uploads are reported, not raised."""
        self.require_auth()
        attachments = attachments or []

        with log_context("generate"):
            tokens = await self.extract_tokens()

            results = await asyncio.gather(
                *(self._upload(tokens, a) for a in attachments), return_exceptions=True
            )
            refs: list[AttachmentRef] = []
            errors: list[AttachmentError] = []
            for attachment, result in zip(attachments, results):
                if isinstance(result, UploadedAttachment):
                    refs.append(AttachmentRef(result.storage_ref, result.file_name, result.mime_type))
                elif isinstance(result, (ImageGenException, aiohttp.ClientError, asyncio.TimeoutError)):
                    log(f"Upload failed for {attachment.file_name}: {result}", "✕")
                    errors.append(AttachmentError(attachment.file_name, str(result)))
                else:
                    raise result

            response = await send_generate(
                self.http,
                self.store,
                tokens,
                prompt,
                attachments=tuple(refs),
                locale=self.locale,
                model_id=self.model_id,
                endpoints=self.endpoints,
                timeout=float(get_setting("generate_timeout", 120)),
            )

        return GenerationResult(response=response, tokens=tokens, attachment_errors=errors)

    async def upscale(
        self,
        image_token: str,
        response_chunk_id: str,
        conversation_id: str,
        response_id: str,
        prompt: str,
        tokens: SessionTokens | None = None,
    ) -> str:
        """Return a full-size download URL for a previously generated image."""
        self.require_auth()
        with log_context("upscale"):
            tokens = tokens or await self.extract_tokens()
            return await request_full_size(
                self.http,
                self.store,
                tokens,
                image_token,
                response_chunk_id,
                conversation_id,
                response_id,
                prompt,
                locale=self.locale,
                endpoints=self.endpoints,
                timeout=float(get_setting("upscale_timeout", 30)),
            )

    async def fetch(self, url: str) -> bytes:
        data = await fetch_image(
            self.http, self.store, url, self.endpoints, timeout=float(get_setting("download_timeout", 60))
        )
        log_media_capture(data, "gemini")
        return data

    async def download_all(self, images: list[ParsedImage] | tuple[ParsedImage, ...]) -> list[DownloadOutcome]:
        """Download every image concurrently. One failure never aborts the others."""

        async def one(image: ParsedImage) -> DownloadOutcome:
            try:
                return DownloadOutcome(image, data=await self.fetch(image.url))
            except ImageGenException as e:
                log(f"Download failed for {image.filename}: {e.message}", "✕")
                return DownloadOutcome(image, error=e.message)

        return list(await asyncio.gather(*(one(image) for image in images)))
