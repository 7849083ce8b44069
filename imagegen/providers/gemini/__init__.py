"""Gemini web backend: tokens, uploads, StreamGenerate, full-size RPC and downloads."""

from .client import AttachmentError, AttachmentInput, DownloadOutcome, GeminiClient, GenerationResult
from .fetch import fetch_image
from .schema import DEFAULT_ENDPOINTS, Endpoints
from .stream import ParsedImage, ParsedResponse, decode_stream, parse_stream
from .tokens import SessionTokens, extract_tokens
from .upload import UploadedAttachment, upload_attachment
from .upscale import decode_upscale_response, request_full_size

__all__ = [
    "GeminiClient",
    "AttachmentInput",
    "AttachmentError",
    "GenerationResult",
    "DownloadOutcome",
    "Endpoints",
    "DEFAULT_ENDPOINTS",
    "SessionTokens",
    "extract_tokens",
    "UploadedAttachment",
    "upload_attachment",
    "ParsedImage",
    "ParsedResponse",
    "parse_stream",
    "decode_stream",
    "request_full_size",
    "decode_upscale_response",
    "fetch_image",
]
