"""Configuration loader for ImageGen.

Settings come from built-in defaults, then ``settings.json`` (path overridable
with ``IMAGEGEN_SETTINGS``), then ``IMAGEGEN_<KEY>`` environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationException

REPO_ROOT = Path(__file__).parent.parent.parent
SETTINGS_PATH = REPO_ROOT / "settings.json"
ENV_PREFIX = "IMAGEGEN_"

DEFAULTS: dict[str, Any] = {
    # Server
    "host": "0.0.0.0",
    "port": 3000,
    "max_upload_mb": 200,
    "data_dir": str(REPO_ROOT / "user_data"),
    # Cookies
    "env_file": str(REPO_ROOT / ".env"),
    "persist_cookies": True,
    # Upstream request shape
    "locale": "en",
    "model_id": "9d8ca3786ebdfbea",
    # Timeouts (seconds)
    "token_timeout": 30,
    "upload_timeout": 30,
    "generate_timeout": 120,
    "upscale_timeout": 30,
    "download_timeout": 60,
    # Login browser
    "login_timeout": 300,
    "login_grace": 4.0,
    "restore_timeout": 30,
    "headless": True,
    "cdp_url": "",
    "viewport_width": 1280,
    "viewport_height": 800,
    # Diagnostics
    "debug_dumps": True,
}

_settings: dict = {}


def _coerce(key: str, raw: str) -> Any:
    """Convert an env var string to the type of the default value."""
    default = DEFAULTS.get(key)
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes")
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigurationException(f"{ENV_PREFIX}{key.upper()}", f"Expected a number, got {raw!r}") from None
    return raw


def get_settings_path() -> Path:
    return Path(os.getenv(f"{ENV_PREFIX}SETTINGS", str(SETTINGS_PATH)))


def load_settings() -> dict:
    """Load settings (defaults < settings.json < environment)."""
    global _settings
    if _settings:
        return _settings

    merged = dict(DEFAULTS)
    path = get_settings_path()
    try:
        with open(path, encoding="utf-8") as f:
            file_settings = json.load(f)
        if not isinstance(file_settings, dict):
            raise ConfigurationException(str(path), "Top level must be an object")
        merged.update(file_settings)
    except FileNotFoundError:
        pass
    except json.JSONDecodeError as e:
        raise ConfigurationException(str(path), f"Invalid JSON: {e}") from e

    for key in DEFAULTS:
        raw = os.getenv(f"{ENV_PREFIX}{key.upper()}")
        if raw is not None:
            merged[key] = _coerce(key, raw)

    _settings = merged
    return _settings


def save_settings(settings: dict):
    """Save settings to file."""
    global _settings
    path = get_settings_path()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    _settings = {}


def get_setting(key: str, default=None):
    """Get a setting value."""
    return load_settings().get(key, default)


def reload():
    """Force reload of settings."""
    global _settings
    _settings = {}
    return load_settings()
