"""Checking for and downloading newer fingerprint rule files."""

from __future__ import annotations

import logging
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_RULES_FILE = "finger.yaml"
DOWNLOAD_TIMEOUT = 30.0
VERSION_TIMEOUT = 1.0
VERSION_RANGE = "bytes=0-1024"

_VERSION_PREFIX = "# version:"


class UpdateError(Exception):
    """Raised when the rules cannot be checked or updated."""


def extract_version(content: Union[bytes, str]) -> str:
    """Return the version from a ``# version: X`` comment line, or an empty string."""
    if isinstance(content, (bytes, bytearray)):
        text = bytes(content).decode("utf-8", "replace")
    else:
        text = content
    for raw in text.split("\n"):
        line = raw.strip()
        if line.startswith(_VERSION_PREFIX):
            return line.split(":")[1].strip()
    return ""


def _parse_float(text: str) -> Optional[float]:
    if text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def compare_versions(v1: str, v2: str) -> bool:
    """Whether ``v2`` is newer than ``v1``; non-numeric versions differ when unequal."""
    if not v1 or not v2:
        return True
    f1, f2 = _parse_float(v1), _parse_float(v2)
    if f1 is not None and f2 is not None:
        return f1 < f2
    return v1 != v2


def _fetch(url: str, timeout: float, headers: Optional[dict[str, str]] = None) -> tuple[int, bytes]:
    request = urllib.request.Request(url, headers=headers or {}, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status, response.read()
    except urllib.error.HTTPError as exc:
        exc.close()
        return exc.code, b""
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise UpdateError(str(exc)) from exc


class Updater:
    """Keeps a local rules file in step with a remote copy."""

    def __init__(self, local_path: Union[str, os.PathLike], remote_url: str) -> None:
        self.local_path = Path(local_path)
        self.remote_url = remote_url

    def check_for_updates(self) -> tuple[bool, str, str]:
        """Return ``(has_update, local_version, remote_version)``."""
        try:
            local = self.local_version()
        except FileNotFoundError:
            return True, "0.0", "unknown"
        except OSError as exc:
            raise UpdateError(f"failed to read local rules: {exc}") from exc

        try:
            remote = self.remote_version()
        except UpdateError as exc:
            raise UpdateError(f"failed to check remote version: {exc}") from exc

        return compare_versions(local, remote), local, remote

    def update_rules(self) -> str:
        """Download the remote rules over the local file and return their version."""
        logger.info("downloading latest fingerprint rules: %s", self.remote_url)
        status, content = _fetch(self.remote_url, DOWNLOAD_TIMEOUT)
        if status != 200:
            raise UpdateError(f"download failed, HTTP status: {status}")

        version = extract_version(content)
        if not version:
            raise UpdateError("downloaded content is invalid or holds no version")

        try:
            self.local_path.parent.mkdir(parents=True, exist_ok=True)
            self.local_path.write_bytes(content)
        except OSError as exc:
            raise UpdateError(f"failed to write rules file: {exc}") from exc

        logger.info("fingerprint rules updated, version: %s", version)
        return version

    def local_version(self) -> str:
        """Version of the local rules file; raises OSError when it cannot be read."""
        return extract_version(self.local_path.read_bytes())

    def remote_version(self) -> str:
        """Version of the remote rules file, read from its first kilobyte."""
        status, content = _fetch(self.remote_url, VERSION_TIMEOUT, {"Range": VERSION_RANGE})
        if status not in (200, 206):
            raise UpdateError(f"HTTP request failed: {status}")
        version = extract_version(content)
        if not version:
            raise UpdateError("no version information found")
        return version