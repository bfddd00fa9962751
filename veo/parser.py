"""Evaluation of fingerprint DSL expressions and extraction of match snippets."""

from __future__ import annotations

import operator
import re
import threading
from typing import Callable, Mapping, Optional, Pattern, Sequence

from veo.types import DSLContext

_SPACE_RUN = re.compile(r"[ \t]+")
_NEWLINE_RUN = re.compile(r"\n+")
_INTEGER = re.compile(r"[+-]?[0-9]+")

_STATUS_OPERATORS: tuple[tuple[str, Callable[[int, int], bool]], ...] = (
    ("==", operator.eq),
    ("!=", operator.ne),
    (">=", operator.ge),
    ("<=", operator.le),
    (">", operator.gt),
    ("<", operator.lt),
)

_TEXT_SOURCES = frozenset({"body", "header", "title", "server", "url"})
_REGEX_SOURCES = frozenset({"body", "header", "title"})

_SNIPPET_CONTEXT = 100


def _strip_outer_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return text


def _clean_quotes(text: str) -> str:
    return _strip_outer_quotes(text.strip())


def _parse_parameters(content: str) -> list[str]:
    """Split function arguments on commas that are not inside quotes."""
    params: list[str] = []
    current: list[str] = []
    quote: Optional[str] = None
    for char in content:
        if quote is None and char in "\"'":
            quote = char
            current.append(char)
        elif quote is not None and char == quote:
            quote = None
            current.append(char)
        elif quote is None and char == ",":
            params.append("".join(current))
            current = []
        else:
            current.append(char)
    if current:
        params.append("".join(current))
    return params


def _call_args(dsl: str, name: str) -> Optional[list[str]]:
    prefix = name + "("
    if dsl.startswith(prefix) and dsl.endswith(")") and len(dsl) > len(prefix):
        return _parse_parameters(dsl[len(prefix):-1])
    return None


def _call_body(dsl: str, name: str) -> Optional[str]:
    prefix = name + "("
    if dsl.startswith(prefix) and dsl.endswith(")") and len(dsl) > len(prefix):
        return dsl[len(prefix):-1]
    return None


def _headers_to_string(headers: Optional[Mapping[str, Sequence[str]]]) -> str:
    if not headers:
        return ""
    return "".join(f"{name}: {value}\n" for name, values in headers.items() for value in values)


def _header_values(headers: Optional[Mapping[str, Sequence[str]]], name: str) -> Sequence[str]:
    if not headers:
        return ()
    target = name.strip().lower()
    for key, values in headers.items():
        if key.lower() == target:
            return values
    return ()


def _response_title(ctx: DSLContext) -> str:
    return ctx.response.title if ctx.response is not None else ""


def _response_server(ctx: DSLContext) -> str:
    return ctx.response.server if ctx.response is not None else ""


def _source_text(source: str, ctx: DSLContext) -> str:
    if source == "body":
        return ctx.body
    if source == "header":
        return _headers_to_string(ctx.headers)
    if source == "url":
        return ctx.url
    if source == "title":
        return _response_title(ctx)
    return _response_server(ctx)


def _snippet_source(source: str, ctx: DSLContext) -> str:
    name = _clean_quotes(source).strip().lower()
    if name in ("header", "headers"):
        return _headers_to_string(ctx.headers)
    if name == "title":
        return _response_title(ctx)
    if name == "server":
        return _response_server(ctx)
    if name == "url":
        return ctx.url
    if name == "method":
        return ctx.method
    return ctx.body


def normalize_snippet(snippet: str) -> str:
    """Unify line endings, collapse runs of blanks and newlines, and trim."""
    snippet = snippet.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    snippet = _SPACE_RUN.sub(" ", snippet)
    snippet = _NEWLINE_RUN.sub("\n", snippet)
    return snippet.strip()


def _build_snippet(content: str, start: int, end: int) -> str:
    if start < 0 or end <= start or start >= len(content):
        return ""
    end = min(end, len(content))
    before = max(start - _SNIPPET_CONTEXT, 0)
    after = min(end + _SNIPPET_CONTEXT, len(content))
    text = content[before:after]
    if before > 0:
        text = "..." + text
    if after < len(content):
        text += "..."
    return normalize_snippet(text)


class DSLParser:
    """Evaluates fingerprint DSL expressions against a response context."""

    def __init__(self) -> None:
        self._regex_cache: dict[str, Pattern[str]] = {}
        self._lock = threading.Lock()

    def evaluate(self, dsl: str, ctx: DSLContext) -> bool:
        """Return whether the expression holds for the context."""
        dsl = dsl.strip()
        if not dsl:
            return False
        dsl = _strip_outer_quotes(dsl)

        if "||" in dsl:
            return any(self.evaluate(part.strip(), ctx) for part in dsl.split("||"))
        if "&&" in dsl:
            return all(self.evaluate(part.strip(), ctx) for part in dsl.split("&&"))

        handlers = (
            self._contains,
            self._regex,
            self._status_code,
            self._icon,
            self._title,
            self._server,
            self._header,
            self._contains_all,
        )
        for handler in handlers:
            result = handler(dsl, ctx)
            if result is not None:
                return result
        return False

    def extract_snippet(self, dsl: str, ctx: Optional[DSLContext]) -> str:
        """Return the text around what the expression matched, or an empty string."""
        if ctx is None:
            return ""
        expr = dsl.strip()
        if not expr:
            return ""
        expr = _strip_outer_quotes(expr)
        lowered = expr.lower()
        if not expr.endswith(")"):
            return ""

        if lowered.startswith("contains("):
            return self._text_snippet(expr[len("contains("):-1], ctx, require_text=False)
        if lowered.startswith("contains_all("):
            return self._text_snippet(expr[len("contains_all("):-1], ctx, require_text=True)
        if lowered.startswith("regex("):
            return self._regex_snippet(expr[len("regex("):-1], ctx)
        return ""

    def _compile(self, pattern: str) -> Optional[Pattern[str]]:
        with self._lock:
            compiled = self._regex_cache.get(pattern)
        if compiled is not None:
            return compiled
        try:
            compiled = re.compile(pattern)
        except re.error:
            return None
        with self._lock:
            self._regex_cache[pattern] = compiled
        return compiled

    def _contains(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        args = _call_args(dsl, "contains")
        if args is None or len(args) < 2:
            return None
        source = args[0].strip()
        if source not in _TEXT_SOURCES:
            return False
        lowered = _source_text(source, ctx).lower()
        return any(_clean_quotes(arg).lower() in lowered for arg in args[1:])

    def _regex(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        args = _call_args(dsl, "regex")
        if args is None:
            return None
        if len(args) >= 2:
            source = args[0].strip()
            pattern = _clean_quotes(args[1])
            if source not in _REGEX_SOURCES:
                return False
            target = _source_text(source, ctx)
        elif len(args) == 1:
            target = ctx.body
            pattern = _clean_quotes(args[0])
        else:
            return False
        compiled = self._compile(pattern)
        if compiled is None:
            return None
        return compiled.search(target) is not None

    def _status_code(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        if "status_code" not in dsl:
            return None
        compact = dsl.replace(" ", "")
        actual = ctx.response.status_code if ctx.response is not None else 0
        for symbol, compare in _STATUS_OPERATORS:
            marker = "status_code" + symbol
            if marker not in compact:
                continue
            parts = compact.split(marker)
            if len(parts) != 2:
                continue
            expected = parts[1].strip()
            if _INTEGER.fullmatch(expected):
                return compare(actual, int(expected))
        return None

    def _icon(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        args = _call_args(dsl, "icon")
        if args is None or len(args) < 2:
            return None
        icon_path = _clean_quotes(args[0])
        expected_hash = _clean_quotes(args[1])
        if ctx.http_client is None or not ctx.base_url or ctx.engine is None:
            return None
        return ctx.engine.check_icon_match(ctx.base_url + icon_path, expected_hash, ctx.http_client)

    def _title(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        content = _call_body(dsl, "title")
        if content is None:
            return None
        return _clean_quotes(content).lower() in _response_title(ctx).lower()

    def _server(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        content = _call_body(dsl, "server")
        if content is None:
            return None
        return _clean_quotes(content).lower() in _response_server(ctx).lower()

    def _header(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        args = _call_args(dsl, "header")
        if not args:
            return None
        name = _clean_quotes(args[0])
        expected = _clean_quotes(args[1]) if len(args) >= 2 else ""
        values = _header_values(ctx.headers, name)
        if not values:
            return False
        if not expected:
            return True
        expected = expected.lower()
        return any(expected in value.lower() for value in values)

    def _contains_all(self, dsl: str, ctx: DSLContext) -> Optional[bool]:
        args = _call_args(dsl, "contains_all")
        if args is None:
            return None
        if len(args) < 2:
            return False
        source = args[0].strip()
        if source not in _TEXT_SOURCES:
            return False
        lowered = _source_text(source, ctx).lower()
        return all(_clean_quotes(arg).lower() in lowered for arg in args[1:])

    def _text_snippet(self, content: str, ctx: DSLContext, require_text: bool) -> str:
        params = _parse_parameters(content)
        if len(params) < 2:
            return ""
        target = _snippet_source(params[0].strip(), ctx)
        if not target:
            return ""
        lowered = target.lower()
        for param in params[1:]:
            search = _clean_quotes(param)
            if not search:
                continue
            index = lowered.find(search.lower())
            if index == -1:
                continue
            snippet = _build_snippet(target, index, index + len(search))
            if snippet or not require_text:
                return snippet
        return ""

    def _regex_snippet(self, content: str, ctx: DSLContext) -> str:
        params = _parse_parameters(content)
        if len(params) >= 2:
            target = _snippet_source(params[0].strip(), ctx)
            pattern = _clean_quotes(params[1])
        elif len(params) == 1:
            target = ctx.body
            pattern = _clean_quotes(params[0])
        else:
            return ""
        if not target or not pattern:
            return ""
        compiled = self._compile(pattern)
        if compiled is None:
            return ""
        found = compiled.search(target)
        if found is None:
            return ""
        return _build_snippet(target, found.start(), found.end())