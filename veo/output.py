"""Output of fingerprint results."""

from __future__ import annotations

import json
import sys
from typing import Any, Iterable, Optional, Protocol, Sequence, TextIO

from veo.dedup import Deduplicator
from veo.types import FingerprintMatch, HTTPResponse, OutputHook

_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class OutputFormatter(Protocol):
    """Something that presents fingerprint results."""

    def format_match(self, matches: Sequence[FingerprintMatch], response: HTTPResponse, *args: str) -> None:
        """Present the matches found in a response; extra arguments are tags."""
        ...

    def format_no_match(self, response: HTTPResponse) -> None:
        """Present a response in which nothing matched."""
        ...

    def should_output(self, url: str, fingerprint_names: Optional[Iterable[str]]) -> bool:
        """Whether this result has not been presented yet."""
        ...


def unique_matches_by_rule_name(matches: Sequence[Optional[FingerprintMatch]]) -> list[FingerprintMatch]:
    """Keep the first match of each rule name, dropping empty names and None."""
    if len(matches) <= 1:
        return list(matches)  # type: ignore[arg-type]
    seen: set[str] = set()
    unique: list[FingerprintMatch] = []
    for match in matches:
        if match is None:
            continue
        name = match.rule_name.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        unique.append(match)
    return unique


def _dumps(data: Any) -> str:
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _HTML_ESCAPES:
        text = text.replace(char, escape)
    return text


def _base_result(response: HTTPResponse) -> dict[str, Any]:
    return {
        "url": response.url,
        "status_code": response.status_code,
        "title": response.title,
        "content_length": response.content_length,
        "content_type": response.content_type,
    }


class JSONOutputFormatter:
    """Writes one compact JSON object per reported response."""

    def __init__(self, stream: Optional[TextIO] = None, output_hook: Optional[OutputHook] = None) -> None:
        self.stream = stream
        self.output_hook = output_hook
        self._dedup = Deduplicator()

    def _emit(self, data: dict[str, Any]) -> None:
        print(_dumps(data), file=self.stream or sys.stdout)

    def format_match(self, matches: Sequence[FingerprintMatch], response: Optional[HTTPResponse], *args: str) -> None:
        """Write the matches of a response unless this result was already written."""
        if not matches or response is None:
            return
        unique = unique_matches_by_rule_name(matches)
        if not unique:
            return
        names = [match.rule_name for match in unique if match is not None]
        if not self.should_output(response.url, names):
            return

        tags = list(args)
        if self.output_hook is not None:
            self.output_hook(response, unique, tags)

        result = _base_result(response)
        result["fingerprints"] = [match.to_dict() for match in unique if match is not None]
        if tags:
            result["tags"] = tags
        self._emit(result)

    def format_no_match(self, response: Optional[HTTPResponse]) -> None:
        """Write a response without matches unless it was already written."""
        if response is None:
            return
        if not self.should_output(response.url, None):
            return
        if self.output_hook is not None:
            self.output_hook(response, None, None)
        self._emit(_base_result(response))

    def should_output(self, url: str, fingerprint_names: Optional[Iterable[str]]) -> bool:
        """Whether this URL and fingerprint set is new."""
        return self._dedup.should_output(url, fingerprint_names)