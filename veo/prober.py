"""Active fingerprint probing: rule paths, favicons and a missing page."""

from __future__ import annotations

import html
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
from urllib.parse import SplitResult, urlsplit

from veo.types import (
    FingerprintMatch,
    FingerprintRule,
    HeaderAwareClient,
    HTTPClient,
    HTTPResponse,
    ProbeResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_TIMEOUT = 300.0
DEFAULT_CONCURRENCY = 20
NOT_FOUND_PATH = "/404test"

_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_BLANKS = re.compile(r"\s+")


def extract_title(body: str) -> str:
    """Return the text of the page's ``<title>`` element, or an empty string."""
    found = _TITLE.search(body or "")
    if found is None:
        return ""
    return _BLANKS.sub(" ", html.unescape(found.group(1))).strip()


def join_url_path(base_url: str, path: str) -> str:
    """Append ``path`` to ``base_url``; absolute HTTP(S) paths are returned unchanged."""
    if path.startswith(("http://", "https://")):
        return path
    base = base_url.rstrip("/")
    clean = path.strip()
    if not clean:
        return base + "/"
    if not clean.startswith("/"):
        clean = "/" + clean
    return base + clean


def _parse_base(base_url: str) -> SplitResult:
    try:
        return urlsplit(base_url)
    except ValueError as exc:
        raise ValueError(f"failed to parse URL: {exc}") from exc


def _byte_length(body: Union[str, bytes]) -> int:
    if isinstance(body, bytes):
        return len(body)
    return len(body.encode("utf-8", "surrogateescape"))


def _request(client: HTTPClient, url: str, headers: Optional[Mapping[str, str]]) -> tuple[str, int]:
    if headers:
        if isinstance(client, HeaderAwareClient):
            return client.make_request_with_headers(url, headers)
        logger.debug("HTTP client cannot send custom headers, using a plain request: %s", url)
    return client.make_request(url)


def _page(url: str, body: str, status: int) -> HTTPResponse:
    return HTTPResponse(
        url=url,
        method="GET",
        status_code=status,
        response_headers={},
        body=body,
        content_type="text/html",
        content_length=_byte_length(body),
        title=extract_title(body),
    )


@dataclass(frozen=True)
class _Task:
    rule: FingerprintRule
    path: str


class ActiveProber:
    """Runs active probes for an engine's rules against a target site."""

    def __init__(self, engine: Any) -> None:
        self.engine = engine

    def execute_active_probing(
        self, base_url: str, http_client: HTTPClient, timeout: Optional[float] = None
    ) -> list[ProbeResult]:
        """Request every rule path (and ``/`` for header rules) and return the matches."""
        logger.debug("starting active probing: %s", base_url)
        manager = self.engine.rule_manager
        path_rules = manager.path_rules()
        header_rules = manager.header_rules()
        if manager.path_rules_count() == 0 and not header_rules:
            logger.debug("no rules need active probing, skipping")
            return []

        _parse_base(base_url)

        tasks = [_Task(rule, path.strip()) for rule in path_rules for path in rule.paths]
        tasks.extend(_Task(rule, "/") for rule in header_rules)
        if not tasks:
            return []

        concurrency = self.engine.config.max_concurrency
        if concurrency <= 0:
            concurrency = DEFAULT_CONCURRENCY
        deadline = None if timeout is None else time.monotonic() + timeout

        def run(task: _Task) -> Optional[ProbeResult]:
            if deadline is not None and time.monotonic() >= deadline:
                return None
            return self._probe_path(base_url, http_client, task)

        with ThreadPoolExecutor(max_workers=max(1, min(concurrency, len(tasks)))) as pool:
            outcomes = list(pool.map(run, tasks))
        return [outcome for outcome in outcomes if outcome is not None]

    def _probe_path(self, base_url: str, client: HTTPClient, task: _Task) -> Optional[ProbeResult]:
        url = join_url_path(base_url, task.path)
        headers = task.rule.header_map() if task.rule.has_headers() else None
        try:
            body, status = _request(client, url, headers)
        except Exception as exc:
            logger.debug("probe request failed: %s, %s", url, exc)
            return None
        page = _page(url, body, status)
        ctx = self.engine.create_context(page, client, base_url)
        match = self.engine.match_rule(task.rule, ctx)
        if match is None:
            return None
        return ProbeResult(response=page, matches=[match])

    def execute_icon_probing(self, base_url: str, http_client: HTTPClient) -> Optional[ProbeResult]:
        """Evaluate every ``icon()`` rule against the site; None when nothing matched."""
        logger.debug("starting icon probing: %s", base_url)
        icon_rules = self.engine.icon_rules()
        if not icon_rules:
            return None
        _parse_base(base_url)

        page = HTTPResponse(url=base_url, method="GET", status_code=200, response_headers={})
        ctx = self.engine.create_context(page, http_client, base_url)
        matches = [
            match
            for match in (self.engine.match_rule(rule, ctx) for rule in icon_rules)
            if match is not None
        ]
        if not matches:
            return None
        return ProbeResult(response=page, matches=matches)

    def execute_404_probing(self, base_url: str, http_client: HTTPClient) -> Optional[ProbeResult]:
        """Request a page that should not exist and match every rule against it."""
        logger.debug("starting 404 page fingerprinting: %s", base_url)
        parts = _parse_base(base_url)
        url = f"{parts.scheme}://{parts.netloc}{NOT_FOUND_PATH}"

        body, status = _request(http_client, url, None)
        page = _page(url, body, status)
        matches = self._match_all(page, http_client, base_url)
        if not matches:
            return None
        return ProbeResult(response=page, matches=matches)

    def _match_all(self, page: HTTPResponse, client: HTTPClient, base_url: str) -> list[FingerprintMatch]:
        ctx = self.engine.create_context(page, client, base_url)
        matches: list[FingerprintMatch] = []
        for rule in self.engine.rule_manager.rules_snapshot():
            match = self.engine.match_rule(rule, ctx)
            if match is not None:
                matches.append(match)
                logger.debug("404 page matched fingerprint: %s", match.rule_name)
        logger.debug("404 page matching finished, %d fingerprints", len(matches))
        return matches

    def trigger(
        self, base_url: str, http_client: Optional[HTTPClient], timeout: Optional[float] = None
    ) -> Optional[threading.Thread]:
        """Run path and 404 probing in a background thread and return that thread."""
        if http_client is None:
            return None
        if timeout is None or timeout <= 0:
            timeout = DEFAULT_TRIGGER_TIMEOUT

        def run() -> None:
            try:
                self.execute_active_probing(base_url, http_client, timeout)
            except Exception as exc:
                logger.debug("active probing failed: %s", exc)
            try:
                self.execute_404_probing(base_url, http_client)
            except Exception as exc:
                logger.debug("404 probing failed: %s", exc)

        thread = threading.Thread(target=run, name=f"probe {base_url}", daemon=True)
        thread.start()
        return thread