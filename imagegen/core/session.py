"""Cookie store for the Gemini web session."""

import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path

from .log import log, mask

PSID = "__Secure-1PSID"
PSIDTS = "__Secure-1PSIDTS"
REQUIRED_COOKIES = (PSID, PSIDTS)
COMBINED_ENV_VAR = "GOOGLE_COOKIES"

# Set-Cookie entries worth keeping: the 1PSID family (1PSID, 1PSIDTS, 1PSIDCC, ...)
SESSION_COOKIE_RE = re.compile(r"^(__Secure-1PSID[A-Z]*)=([^;]+)")


def parse_cookie_header(header: str) -> dict[str, str]:
    """Parse a ``name=value; name=value`` string."""
    cookies = {}
    for pair in header.split(";"):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if sep and name:
            cookies[name] = value.strip()
    return cookies


def parse_set_cookie(values: Iterable[str]) -> dict[str, str]:
    """Extract session cookies from Set-Cookie header values.

    Each value may hold several newline-joined entries (as reported by DevTools).
    """
    updates = {}
    for value in values:
        for entry in str(value).split("\n"):
            match = SESSION_COOKIE_RE.match(entry.strip())
            if match:
                updates[match.group(1)] = match.group(2)
    return updates


class CookieStore:
    """Holds the session cookie set shared by every upstream call.

    Entries are only ever added or overwritten. When ``persist_path`` is set,
    refreshed values are written back to that ``KEY=VALUE`` file so the next
    process start resumes authenticated.
    """

    def __init__(self, cookies: Mapping[str, str] | None = None, persist_path: str | Path | None = None):
        self._cookies: dict[str, str] = dict(cookies or {})
        self.persist_path = Path(persist_path) if persist_path else None

    def merge(self, updates: Mapping[str, str]) -> None:
        """Add or overwrite entries. Never removes anything."""
        for name, value in updates.items():
            self._cookies[name] = value

    def replace(self, cookies: Mapping[str, str]) -> None:
        """Swap in a whole new cookie set at once."""
        self._cookies = dict(cookies)

    def snapshot(self) -> dict[str, str]:
        return dict(self._cookies)

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    def as_header_string(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())

    def has_required_cookies(self) -> bool:
        return all(self._cookies.get(name) for name in REQUIRED_COOKIES)

    def load_from_environment(self, env: Mapping[str, str] | None = None) -> bool:
        """Seed the store from the combined cookie string or the two individual values.

        Returns True if anything was loaded.
        """
        env = os.environ if env is None else env

        combined = env.get(COMBINED_ENV_VAR)
        if combined:
            self.merge(parse_cookie_header(combined))
            return True

        loaded = {name: env[name] for name in REQUIRED_COOKIES if env.get(name)}
        self.merge(loaded)
        return bool(loaded)

    def refresh_from_set_cookie(self, values: Iterable[str]) -> dict[str, str]:
        """Merge session cookies observed in Set-Cookie headers and persist them."""
        updates = parse_set_cookie(values)
        if not updates:
            return updates

        self.merge(updates)
        self.persist(updates)
        return updates

    def persist(self, updates: Mapping[str, str]) -> bool:
        """Write updated values into the persistence file. Failures are logged, never raised."""
        if not self.persist_path or not updates:
            return False

        try:
            content = self.persist_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = ""
        except OSError as e:
            log(f"Could not read {self.persist_path}: {e}", "⚠")
            return False

        for name, value in updates.items():
            pattern = re.compile(rf"^{re.escape(name)}=.*$", re.MULTILINE)
            line = f"{name}={value}"
            if pattern.search(content):
                content = pattern.sub(lambda _m: line, content)
            else:
                if content and not content.endswith("\n"):
                    content += "\n"
                content += line + "\n"

        try:
            self.persist_path.write_text(content, encoding="utf-8")
        except OSError as e:
            log(f"Could not persist cookies to {self.persist_path}: {e}", "⚠")
            return False

        log(f"Auto-refreshed cookies: {', '.join(updates)}", "✓")
        return True

    def __contains__(self, name: str) -> bool:
        return name in self._cookies

    def __len__(self) -> int:
        return len(self._cookies)

    def __repr__(self):
        psid = mask(self._cookies.get(PSID), 8)
        return f"CookieStore(cookies={len(self._cookies)}, psid={psid})"


def create_cookie_store() -> CookieStore:
    """Build the process cookie store from the .env file and the environment.

    Process environment variables take precedence over the file.
    """
    from dotenv import dotenv_values

    from .config import get_setting

    env_file = get_setting("env_file")
    persist_path = env_file if get_setting("persist_cookies", True) else None
    store = CookieStore(persist_path=persist_path)

    file_values = {k: v for k, v in dotenv_values(env_file).items() if v} if env_file else {}
    if store.load_from_environment({**file_values, **os.environ}):
        log("Cookies loaded from environment", "✓")
    else:
        log("No cookies in environment - use the login flow to authenticate", "○")
    return store
