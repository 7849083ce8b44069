"""ImageGen core - Shared infrastructure."""

from .exceptions import (
    AuthExpiredException,
    DownloadFailedException,
    ImageGenException,
    NoImagesProducedException,
    ProtocolMismatchException,
)
from .log import debug_log, log, log_context
from .session import CookieStore, create_cookie_store

__all__ = [
    # log
    "log",
    "debug_log",
    "log_context",
    # session
    "CookieStore",
    "create_cookie_store",
    # exceptions
    "ImageGenException",
    "AuthExpiredException",
    "ProtocolMismatchException",
    "DownloadFailedException",
    "NoImagesProducedException",
]
