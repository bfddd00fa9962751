"""In-memory de-duplication of fingerprint results."""

from __future__ import annotations

import threading
from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit


class Deduplicator:
    """Remembers which (URL, fingerprint set) pairs have already been reported."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def should_output(self, url: str, fingerprint_names: Optional[Iterable[str]]) -> bool:
        """Return True the first time a key is seen, False on repeats."""
        key = _cache_key(url, list(fingerprint_names or ()))
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def clear(self) -> None:
        """Forget everything seen so far."""
        with self._lock:
            self._seen = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


def _cache_key(raw_url: str, names: list[str]) -> str:
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return raw_url

    scheme = parts.scheme.strip() or "unknown"
    host = parts.netloc.rpartition("@")[2]
    prefix = f"{scheme}://{host}|{unquote(parts.path)}|"

    if not names:
        return prefix
    if len(names) == 1:
        return prefix + names[0].strip()

    unique = sorted({name.strip() for name in names if name.strip()})
    return prefix + ",".join(unique)