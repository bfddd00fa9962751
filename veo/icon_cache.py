"""Cache of favicon hashes and icon match results with request coalescing."""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Optional, Union

from veo.types import HTTPClient

logger = logging.getLogger(__name__)


class IconFetchError(Exception):
    """Raised when an icon cannot be fetched or hashed."""


_FAILED = object()


class IconCache:
    """Caches icon MD5 hashes and match outcomes; one request per URL at a time."""

    def __init__(self) -> None:
        self._hashes: dict[str, Union[str, object]] = {}
        self._matches: dict[str, bool] = {}
        self._inflight: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def check_match(self, icon_url: str, expected_hash: str, client: Optional[HTTPClient]) -> Optional[bool]:
        """Return whether the icon's hash equals ``expected_hash``, or None if it cannot be fetched."""
        key = _match_key(icon_url, expected_hash)
        with self._lock:
            if key in self._matches:
                return self._matches[key]

        try:
            actual = self.get_hash(icon_url, client)
        except IconFetchError:
            return None

        match = actual == expected_hash
        with self._lock:
            self._matches[key] = match
        return match

    def get_hash(self, icon_url: str, client: Optional[HTTPClient]) -> str:
        """Return the icon's MD5 hex digest, fetching it at most once per URL."""
        while True:
            with self._lock:
                if icon_url in self._hashes:
                    return _cached(self._hashes[icon_url])
                pending = self._inflight.get(icon_url)
                if pending is None:
                    done = threading.Event()
                    self._inflight[icon_url] = done
                    break
            pending.wait()

        error: Optional[IconFetchError] = None
        digest = ""
        try:
            digest = _fetch_hash(icon_url, client)
        except IconFetchError as exc:
            error = exc
        finally:
            with self._lock:
                self._hashes[icon_url] = _FAILED if error is not None or not digest else digest
                del self._inflight[icon_url]
                done.set()

        if error is not None:
            raise error
        return digest

    def clear(self) -> None:
        """Drop cached hashes and match results; requests in flight are left alone."""
        with self._lock:
            self._hashes = {}
            self._matches = {}

    def get_match_result(self, icon_url: str, expected_hash: str) -> Optional[bool]:
        """Return the cached match result, or None when there is none."""
        with self._lock:
            return self._matches.get(_match_key(icon_url, expected_hash))

    def set_match_result(self, icon_url: str, expected_hash: str, match: bool) -> None:
        """Store a match result."""
        with self._lock:
            self._matches[_match_key(icon_url, expected_hash)] = match


def _match_key(icon_url: str, expected_hash: str) -> str:
    return f"{icon_url}||{expected_hash}"


def _cached(value: Union[str, object]) -> str:
    if value is _FAILED or not isinstance(value, str):
        raise IconFetchError("icon request failed (cached result)")
    return value


def _fetch_hash(icon_url: str, client: Optional[HTTPClient]) -> str:
    if client is None:
        raise IconFetchError("HTTP client is missing")

    logger.debug("requesting icon: %s", icon_url)
    try:
        body, status = client.make_request(icon_url)
    except Exception as exc:
        logger.debug("icon request failed: %s, %s", icon_url, exc)
        raise IconFetchError(str(exc)) from exc

    if status != 200:
        logger.debug("icon request returned status %d: %s", status, icon_url)
        raise IconFetchError(f"status code {status}")

    data = body if isinstance(body, bytes) else body.encode("utf-8", "surrogateescape")
    digest = hashlib.md5(data).hexdigest()
    logger.debug("icon hash computed: %s -> %s", icon_url, digest)
    return digest