"""Combined JSON reports and a CSV report written as results arrive."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, TextIO, Union
from urllib.parse import urlsplit

from veo.types import FilterResult, FingerprintMatch, HTTPResponse

CSV_HEADER: tuple[str, ...] = ("URL", "Host", "StatusCode", "Title", "Content-Length", "Fingerprint")

_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


@dataclass
class SDKFingerprintMatchOutput:
    """A fingerprint as it appears in a report: rule name and the rule that matched."""

    rule_name: str = ""
    rule_content: str = ""


@dataclass
class FingerprintAPIPage:
    """A page reported by fingerprint identification."""

    url: str = ""
    status_code: int = 0
    title: str = ""
    content_type: str = ""
    duration_ms: int = 0
    matches: list[SDKFingerprintMatchOutput] = field(default_factory=list)


@dataclass
class DirscanAPIPage:
    """A page reported by directory scanning."""

    url: str = ""
    status_code: int = 0
    title: str = ""
    content_length: int = 0
    content_type: str = ""
    duration_ms: int = 0
    fingerprints: list[SDKFingerprintMatchOutput] = field(default_factory=list)


def _match_dict(match: SDKFingerprintMatchOutput) -> dict[str, Any]:
    data: dict[str, Any] = {"rule_name": match.rule_name}
    if match.rule_content:
        data["rule_content"] = match.rule_content
    return data


def _fingerprint_page_dict(page: FingerprintAPIPage) -> dict[str, Any]:
    data: dict[str, Any] = {"url": page.url, "status_code": page.status_code}
    if page.title:
        data["title"] = page.title
    if page.content_type:
        data["content_type"] = page.content_type
    data["duration_ms"] = page.duration_ms
    if page.matches:
        data["matches"] = [_match_dict(match) for match in page.matches]
    return data


def _dirscan_page_dict(page: DirscanAPIPage) -> dict[str, Any]:
    data: dict[str, Any] = {"url": page.url, "status_code": page.status_code}
    if page.title:
        data["title"] = page.title
    data["content_length"] = page.content_length
    if page.content_type:
        data["content_type"] = page.content_type
    data["duration_ms"] = page.duration_ms
    if page.fingerprints:
        data["fingerprints"] = [_match_dict(match) for match in page.fingerprints]
    return data


@dataclass
class CombinedAPIResponse:
    """Fingerprint and directory-scan results in one document."""

    fingerprint: list[FingerprintAPIPage] = field(default_factory=list)
    dirscan: list[DirscanAPIPage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; empty sections and fields are left out."""
        data: dict[str, Any] = {}
        if self.fingerprint:
            data["fingerprint"] = [_fingerprint_page_dict(page) for page in self.fingerprint]
        if self.dirscan:
            data["dirscan"] = [_dirscan_page_dict(page) for page in self.dirscan]
        return data


def _page_length(page: HTTPResponse) -> int:
    return page.content_length if page.content_length != 0 else page.length


def _outputs_from_page(matches: Iterable[FingerprintMatch]) -> list[SDKFingerprintMatchOutput]:
    return [SDKFingerprintMatchOutput(match.rule_name, match.matcher) for match in matches]


def _group_by_url(matches: Iterable[FingerprintMatch]) -> dict[str, list[SDKFingerprintMatchOutput]]:
    grouped: dict[str, list[SDKFingerprintMatchOutput]] = {}
    for match in matches:
        grouped.setdefault(match.url, []).append(SDKFingerprintMatchOutput(match.rule_name, match.dsl_matched))
    return grouped


def _merge(
    base: list[SDKFingerprintMatchOutput], extra: Sequence[SDKFingerprintMatchOutput]
) -> list[SDKFingerprintMatchOutput]:
    if not extra:
        return base
    if not base:
        return list(extra)
    keys = {f"{item.rule_name}|{item.rule_content}" for item in base}
    for item in extra:
        key = f"{item.rule_name}|{item.rule_content}"
        if key in keys:
            continue
        keys.add(key)
        base.append(item)
    return base


def _dirscan_pages(pages: Sequence[HTTPResponse]) -> list[DirscanAPIPage]:
    return [
        DirscanAPIPage(
            url=page.url,
            status_code=page.status_code,
            title=page.title,
            content_length=_page_length(page),
            content_type=page.content_type,
            duration_ms=page.duration,
            fingerprints=_outputs_from_page(page.fingerprints),
        )
        for page in pages
    ]


def _fingerprint_pages(
    pages: Sequence[HTTPResponse], matches: Sequence[FingerprintMatch]
) -> list[FingerprintAPIPage]:
    if not pages and not matches:
        return []
    grouped = _group_by_url(matches)
    results: list[FingerprintAPIPage] = []
    seen: set[str] = set()
    for page in pages:
        outputs = _merge(_outputs_from_page(page.fingerprints), grouped.get(page.url, []))
        results.append(
            FingerprintAPIPage(
                url=page.url,
                status_code=page.status_code,
                title=page.title,
                content_type=page.content_type,
                duration_ms=page.duration,
                matches=outputs,
            )
        )
        seen.add(page.url)
    for url, outputs in grouped.items():
        if url in seen or not outputs:
            continue
        results.append(FingerprintAPIPage(url=url, matches=list(outputs)))
    return results


def build_combined_response(
    dir_pages: Optional[Sequence[HTTPResponse]],
    fingerprint_pages: Optional[Sequence[HTTPResponse]],
    matches: Optional[Sequence[FingerprintMatch]],
) -> CombinedAPIResponse:
    """Combine scanned pages and loose fingerprint matches into one report."""
    return CombinedAPIResponse(
        fingerprint=_fingerprint_pages(list(fingerprint_pages or ()), list(matches or ())),
        dirscan=_dirscan_pages(list(dir_pages or ())),
    )


def generate_combined_json(
    dir_pages: Optional[Sequence[HTTPResponse]],
    fingerprint_pages: Optional[Sequence[HTTPResponse]],
    matches: Optional[Sequence[FingerprintMatch]],
) -> str:
    """Return the combined report as indented JSON text."""
    result = build_combined_response(dir_pages, fingerprint_pages, matches)
    text = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    for char, escape in _HTML_ESCAPES:
        text = text.replace(char, escape)
    return text


def _csv_field(value: str) -> str:
    needs_quotes = bool(value) and (
        value == "\\."
        or any(char in value for char in ',"\r\n')
        or value[0].isspace()
    )
    if not needs_quotes:
        return value
    return '"' + value.replace('"', '""') + '"'


def _csv_line(fields: Iterable[str]) -> str:
    return ",".join(_csv_field(value) for value in fields) + "\n"


def _host_of(raw_url: str) -> str:
    try:
        return urlsplit(raw_url).netloc.rpartition("@")[2]
    except ValueError:
        return ""


class RealtimeCSVReporter:
    """Appends one CSV row per response to a file, flushing after each row."""

    def __init__(self, output_path: Union[str, os.PathLike]) -> None:
        text = str(output_path).strip()
        if not text:
            raise ValueError("output path is empty")
        self.path = text
        Path(text).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._closed = False
        self._file: TextIO = open(text, "a", encoding="utf-8", newline="")
        try:
            if os.fstat(self._file.fileno()).st_size == 0:
                self._file.write(_csv_line(CSV_HEADER))
                self._file.flush()
        except OSError:
            self._file.close()
            raise

    def write_response(self, resp: Optional[HTTPResponse]) -> None:
        """Write one row for the response; does nothing for None."""
        if resp is None:
            return
        names = [match.rule_name for match in resp.fingerprints if match.rule_name]
        with self._lock:
            if self._closed:
                raise ValueError("realtime CSV reporter is closed")
            row = (
                resp.url,
                _host_of(resp.url),
                str(resp.status_code),
                resp.title,
                str(max(resp.content_length, 0)),
                "|".join(names),
            )
            self._file.write(_csv_line(row))
            self._file.flush()

    def close(self) -> None:
        """Flush, sync and close the file; closing twice is harmless."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._file.flush()
                os.fsync(self._file.fileno())
            finally:
                self._file.close()

    def __enter__(self) -> "RealtimeCSVReporter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def generate_realtime_csv_report(
    filter_result: Optional[FilterResult], output_path: Union[str, os.PathLike]
) -> str:
    """Write every valid page of a filter result to a CSV file and return its path."""
    if filter_result is None:
        raise ValueError("filter result is empty")
    with RealtimeCSVReporter(output_path) as reporter:
        for page in filter_result.valid_pages:
            if page is not None:
                reporter.write_response(page)
    return reporter.path