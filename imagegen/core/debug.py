"""Debug utilities for ImageGen - dumps raw upstream bodies when decoding fails."""

import json
import os
import time
from datetime import datetime
from pathlib import Path


def _env_bool(name: str) -> bool:
    """Check if env var is set to a truthy value."""
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def is_debug_logging_enabled() -> bool:
    """Check if IMAGEGEN_DEBUG env var is set."""
    return _env_bool("IMAGEGEN_DEBUG")


def get_debug_dir() -> Path:
    from .config import get_setting

    return Path(get_setting("data_dir")) / "debug_dumps"


def is_debug_dumps_enabled() -> bool:
    """Check if debug dumps are enabled (default: True)."""
    from .config import get_setting

    return bool(get_setting("debug_dumps", True))


def dump_protocol_failure(kind: str, error: Exception, body: str | bytes | None = None) -> Path | None:
    """Save the upstream body that failed to decode.

    Args:
        kind: Which exchange failed (tokens, generate, upscale, ...)
        error: The exception that was raised
        body: Raw response text

    Returns:
        Path of the JSON dump, or None when dumps are disabled or writing failed
    """
    if not is_debug_dumps_enabled():
        return None

    from .log import log

    now = datetime.now()
    date_dir = get_debug_dir() / now.strftime("%Y-%m-%d")
    json_path = date_dir / f"{kind}_{now.strftime('%H%M%S_%f')}.json"

    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    debug_info = {
        "timestamp": now.isoformat(),
        "kind": kind,
        "error": str(error),
        "error_type": type(error).__name__,
        "details": getattr(error, "details", {}),
        "body_length": len(body) if body else 0,
        "body": body,
    }

    try:
        date_dir.mkdir(parents=True, exist_ok=True)
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(debug_info, f, indent=2, default=str)
    except OSError as e:
        log(f"Failed to save debug dump: {e}", "⚠")
        return None

    log(f"Debug dump saved to: {json_path}", "◆")
    return json_path


def cleanup_old_dumps(max_age_days: int = 7):
    """Clean up old debug dump folders."""
    debug_dir = get_debug_dir()
    if not debug_dir.exists():
        return

    cutoff_time = time.time() - (max_age_days * 24 * 60 * 60)

    for date_dir in debug_dir.iterdir():
        if not date_dir.is_dir():
            continue
        try:
            if date_dir.stat().st_mtime < cutoff_time:
                for f in date_dir.iterdir():
                    f.unlink()
                date_dir.rmdir()
        except OSError:
            pass
