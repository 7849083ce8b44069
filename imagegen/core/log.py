"""Console logging helpers."""

import contextvars
from contextlib import contextmanager
from datetime import datetime

from .debug import is_debug_logging_enabled

# Context variable for current operation (e.g., "generate", "login")
_log_context: contextvars.ContextVar[str | None] = contextvars.ContextVar("log_context", default=None)


@contextmanager
def log_context(name: str):
    """Set logging context for a block of code. All logs will include this context."""
    token = _log_context.set(name)
    try:
        yield
    finally:
        _log_context.reset(token)


def log(msg, symbol="▸"):
    """Log with timestamp, context, and symbol."""
    ts = datetime.now().strftime("%H:%M:%S")
    ctx = _log_context.get()
    ctx_str = f" {ctx}:" if ctx else ""
    print(f"[ImageGen {ts}]{ctx_str} {symbol} {msg}")


def debug_log(msg, symbol="⌘"):
    """Log only when IMAGEGEN_DEBUG=1 is set."""
    if is_debug_logging_enabled():
        log(msg, symbol)


def mask(secret: str | None, keep: int = 12) -> str:
    """Shorten a token or cookie value for logging."""
    if not secret:
        return "NONE"
    return secret[:keep] + "..." if len(secret) > keep else secret
