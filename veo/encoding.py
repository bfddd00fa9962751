"""Character-set detection and conversion of response bodies."""

from __future__ import annotations

import codecs
import logging
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

_WS = r"[\t\n\f\r ]"

_CONTENT_TYPE_CHARSET = re.compile(r"charset=([^;,\t\n\f\r ]+)")
_META_CHARSET = re.compile(
    rf"""<meta{_WS}+charset{_WS}*={_WS}*["']?([^"'>\t\n\f\r ]+)""",
    re.IGNORECASE | re.ASCII,
)
_META_HTTP_EQUIV = re.compile(
    rf"""<meta{_WS}+http-equiv{_WS}*={_WS}*["']?content-type["']?{_WS}+content{_WS}*={_WS}*["']?"""
    r"""[^"'>]*charset=([^"'>\t\n\f\r ;]+)""",
    re.IGNORECASE | re.ASCII,
)

_UTF8_NAMES = frozenset({"utf-8", "utf8"})
_GBK_NAMES = frozenset({"gbk", "gb2312", "gb18030"})

Body = Union[bytes, str]


def _as_bytes(body: Body) -> bytes:
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8", "surrogateescape")


def _as_text(body: Body) -> str:
    if isinstance(body, str):
        return body
    return body.decode("utf-8", "surrogateescape")


class EncodingDetector:
    """Detects a body's character set and converts it to text.

    A ``str`` body is treated as bytes that were decoded with UTF-8 and
    ``surrogateescape``; a ``bytes`` body is used as is.
    """

    def detect_and_convert(self, body: Body, content_type: str = "") -> str:
        """Return the body as text, decoded with the best charset found."""
        raw = _as_bytes(body)
        if not raw:
            return ""

        charset = self._charset_from_content_type(content_type)
        if charset:
            logger.debug("charset from Content-Type: %s", charset)
            return self._convert(raw, body, charset)

        charset = self._charset_from_meta(raw)
        if charset:
            logger.debug("charset from meta tag: %s", charset)
            return self._convert(raw, body, charset)

        detected, confidence = self._detect_from_content(raw)
        if confidence > 0.8:
            logger.debug("charset detected: %s (confidence %.2f)", detected, confidence)
            return self._convert(raw, body, detected)

        return _as_text(body)

    @staticmethod
    def _charset_from_content_type(content_type: str) -> str:
        if not content_type:
            return ""
        found = _CONTENT_TYPE_CHARSET.search(content_type.lower())
        return found.group(1).strip() if found else ""

    @staticmethod
    def _charset_from_meta(raw: bytes) -> str:
        text = raw.decode("latin-1")
        for pattern in (_META_CHARSET, _META_HTTP_EQUIV):
            found = pattern.search(text)
            if found:
                return found.group(1).strip().lower()
        return ""

    @staticmethod
    def _detect_from_content(raw: bytes) -> tuple[str, float]:
        if raw.startswith(codecs.BOM_UTF8):
            return "utf-8", 0.9
        if raw.startswith(codecs.BOM_UTF16_LE):
            return "utf-16le", 0.9
        if raw.startswith(codecs.BOM_UTF16_BE):
            return "utf-16be", 0.9
        try:
            raw.decode("utf-8")
        except UnicodeDecodeError:
            return "windows-1252", 0.5
        return "utf-8", 0.5

    @staticmethod
    def _convert(raw: bytes, body: Body, charset: str) -> str:
        name = charset.lower()
        if name in _UTF8_NAMES:
            return _as_text(body)
        if name in _GBK_NAMES:
            return raw.decode("gbk", errors="replace")
        logger.debug("unsupported charset %s, keeping original content", name)
        return _as_text(body)


_default_detector: Optional[EncodingDetector] = None


def get_encoding_detector() -> EncodingDetector:
    """Return the shared detector instance."""
    global _default_detector
    if _default_detector is None:
        _default_detector = EncodingDetector()
    return _default_detector