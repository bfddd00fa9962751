"""Core data types shared by the fingerprint engine, probers and reporters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

STATIC_FILE_EXTENSIONS: tuple[str, ...] = (
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp",
    ".css", ".woff", ".woff2", ".ttf", ".eot",
    ".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".mkv",
)

STATIC_CONTENT_TYPES: tuple[str, ...] = (
    "video/",
    "audio/",
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/pdf",
    "application/msword",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
)


@runtime_checkable
class HTTPClient(Protocol):
    """A client able to fetch a URL with a plain GET request."""

    def make_request(self, url: str) -> tuple[str, int]:
        """Return ``(body, status_code)``; raise on transport failure."""
        ...


@runtime_checkable
class HeaderAwareClient(HTTPClient, Protocol):
    """A client that can also send extra request headers."""

    def make_request_with_headers(self, url: str, headers: Mapping[str, str]) -> tuple[str, int]:
        """Return ``(body, status_code)`` for a request carrying ``headers``."""
        ...


@dataclass
class FingerprintMatch:
    """A single fingerprint that matched a response."""

    url: str = ""
    rule_name: str = ""
    matcher: str = ""
    dsl_matched: str = ""
    technology: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; ``snippet`` is left out when empty."""
        data: dict[str, Any] = {
            "url": self.url,
            "rule_name": self.rule_name,
            "matcher": self.matcher,
            "dsl_matched": self.dsl_matched,
            "technology": self.technology,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.snippet:
            data["snippet"] = self.snippet
        return data


@dataclass
class HTTPResponse:
    """An HTTP response as seen by the scanners."""

    url: str = ""
    method: str = ""
    status_code: int = 0
    title: str = ""
    content_length: int = 0
    content_type: str = ""
    body: str = ""
    response_headers: dict[str, list[str]] = field(default_factory=dict)
    request_headers: dict[str, list[str]] = field(default_factory=dict)
    body_decoded: bool = False
    server: str = ""
    is_directory: bool = False
    length: int = 0
    duration: int = 0
    depth: int = 0
    response_body: str = ""
    fingerprints: list[FingerprintMatch] = field(default_factory=list)


@dataclass
class PageHash:
    """Hash information describing a page."""

    hash: str = ""
    count: int = 0
    status_code: int = 0
    title: str = ""
    content_length: int = 0
    content_type: str = ""


@dataclass
class FilterResult:
    """Result of response filtering."""

    status_filtered_pages: list[HTTPResponse] = field(default_factory=list)
    primary_filtered_pages: list[HTTPResponse] = field(default_factory=list)
    valid_pages: list[HTTPResponse] = field(default_factory=list)
    invalid_page_hashes: list[PageHash] = field(default_factory=list)
    secondary_hash_results: list[PageHash] = field(default_factory=list)
    total_processed: int = 0
    status_filtered: int = 0
    primary_filtered: int = 0
    secondary_filtered: int = 0


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_scalar(value: Any) -> bool:
    return not isinstance(value, (list, tuple, dict, set))


def parse_string_list(value: Any) -> list[str]:
    """Turn a YAML scalar or sequence into a list of trimmed, non-empty strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [
            text
            for text in (_scalar_text(item).strip() for item in value if item is not None and _is_scalar(item))
            if text
        ]
    if _is_scalar(value):
        text = _scalar_text(value).strip()
        return [text] if text else []
    raise ValueError(f"unsupported YAML value for string list: {type(value).__name__}")


def parse_header_line(line: str) -> Optional[tuple[str, str]]:
    """Split ``"Name: value"`` into a pair, or return None when it is not a header."""
    trimmed = line.strip()
    if not trimmed:
        return None
    key, sep, value = trimmed.partition(":")
    if not sep:
        return None
    key = key.strip()
    if not key:
        return None
    return key, value.strip()


@dataclass
class FingerprintRule:
    """A fingerprint rule loaded from a YAML rules file."""

    name: str = ""
    id: str = ""
    dsl: list[str] = field(default_factory=list)
    condition: str = ""
    category: str = ""
    paths: list[str] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "FingerprintRule":
        """Build a rule named ``name`` from its YAML mapping."""
        if not isinstance(data, Mapping):
            raise ValueError(f"rule {name!r} must be a mapping")
        raw_dsl = data.get("dsl")
        if raw_dsl is None:
            dsl: list[str] = []
        elif isinstance(raw_dsl, (list, tuple)):
            if not all(item is None or _is_scalar(item) for item in raw_dsl):
                raise ValueError(f"rule {name!r}: dsl entries must be scalars")
            dsl = ["" if item is None else _scalar_text(item) for item in raw_dsl]
        else:
            raise ValueError(f"rule {name!r}: dsl must be a list")

        def text(key: str) -> str:
            value = data.get(key)
            if value is None:
                return ""
            if not _is_scalar(value):
                raise ValueError(f"rule {name!r}: {key} must be a scalar")
            return _scalar_text(value)

        return cls(
            name=name,
            id=name,
            dsl=dsl,
            condition=text("condition"),
            category=text("category"),
            paths=parse_string_list(data.get("path")),
            headers=parse_string_list(data.get("header")),
        )

    def has_paths(self) -> bool:
        """Whether the rule carries paths for active probing."""
        return bool(self.paths)

    def has_headers(self) -> bool:
        """Whether the rule carries custom request headers."""
        return bool(self.headers)

    def header_map(self) -> dict[str, str]:
        """Return the rule's header lines as a name to value mapping."""
        result: dict[str, str] = {}
        for line in self.headers:
            parsed = parse_header_line(line)
            if parsed is not None:
                key, value = parsed
                result[key] = value
        return result


@dataclass
class EngineConfig:
    """Configuration of the fingerprint engine."""

    rules_path: str = ""
    max_concurrency: int = 0
    enable_filtering: bool = False
    max_body_size: int = 0
    log_matches: bool = False
    static_extensions: Optional[list[str]] = None
    static_content_types: Optional[list[str]] = None
    static_file_filter_enabled: bool = False
    content_type_filter_enabled: bool = False
    show_snippet: bool = False
    output_formatter: Any = None


@dataclass
class Statistics:
    """Counters describing the engine's work."""

    total_requests: int = 0
    matched_requests: int = 0
    filtered_requests: int = 0
    rules_loaded: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_match_time: Optional[datetime] = None


@dataclass
class ProbeResult:
    """Outcome of an active probe: the response and the matches found in it."""

    response: HTTPResponse
    matches: list[FingerprintMatch] = field(default_factory=list)


@dataclass
class DSLContext:
    """Everything a DSL expression may look at while being evaluated."""

    response: Optional[HTTPResponse] = None
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: str = ""
    url: str = ""
    method: str = ""
    http_client: Optional[HTTPClient] = None
    base_url: str = ""
    engine: Any = None


OutputHook = Callable[[HTTPResponse, Optional[list[FingerprintMatch]], Optional[list[str]]], None]