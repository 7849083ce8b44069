"""Shared utilities for ImageGen."""

import mimetypes
import random
import uuid
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .log import log

DEFAULT_MIME = "image/jpeg"
MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def guess_mime(file_name: str, fallback: str = DEFAULT_MIME) -> str:
    """Guess a MIME type from a file name."""
    mime, _ = mimetypes.guess_type(file_name)
    return mime or fallback


def extension_for(mime: str) -> str:
    return MIME_EXTENSIONS.get(mime, ".jpg")


def request_id() -> int:
    """Random ``_reqid`` in the shape the web client uses (6 digits * 100)."""
    return random.randint(100000, 999999) * 100


def client_uuid() -> str:
    return str(uuid.uuid4()).upper()


def request_token() -> str:
    """Random 16 character client request token."""
    return uuid.uuid4().hex[:16]


def image_dimensions(data: bytes) -> tuple[int, int] | None:
    """Return (width, height) if the bytes decode as an image."""
    try:
        with Image.open(BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError):
        return None


def is_image_complete(data: bytes) -> bool:
    """Check if image data is complete (not truncated)."""
    if len(data) < 100:
        return False

    # JPEG end marker (FFD9)
    if data[:2] == b"\xff\xd8":
        return data[-2:] == b"\xff\xd9"

    # PNG end chunk (IEND)
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return b"IEND" in data[-12:]

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
        return True
    except (UnidentifiedImageError, OSError):
        return False


def log_media_capture(data: bytes, source: str = ""):
    """Log downloaded image with size and dimensions if possible."""
    size_kb = len(data) // 1024
    source_str = f" from {source}" if source else ""

    dims = image_dimensions(data)
    if dims:
        status = "" if is_image_complete(data) else " [INCOMPLETE]"
        log(f"Downloaded image: {dims[0]}x{dims[1]} ({size_kb}KB){source_str}{status}", "◆")
        return

    log(f"Downloaded {len(data)} bytes ({size_kb}KB){source_str}", "◆")


def save_image(data: bytes, directory: str | Path, mime: str) -> Path:
    """Write image bytes under a random name and return the path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{uuid.uuid4()}{extension_for(mime)}"
    path.write_bytes(data)
    return path
