"""The fingerprint engine: filtering, rule matching and result bookkeeping."""

from __future__ import annotations

import copy
import logging
import os
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from veo.icon_cache import IconCache
from veo.parser import DSLParser
from veo.rules import RuleManager
from veo.types import (
    STATIC_CONTENT_TYPES,
    STATIC_FILE_EXTENSIONS,
    DSLContext,
    EngineConfig,
    FingerprintMatch,
    FingerprintRule,
    HTTPClient,
    HTTPResponse,
    Statistics,
)

logger = logging.getLogger(__name__)


def default_config() -> EngineConfig:
    """Return the engine's default configuration."""
    return EngineConfig(
        rules_path="config/fingerprint/",
        max_concurrency=20,
        enable_filtering=True,
        max_body_size=1024 * 1024,
        log_matches=True,
    )


def _base_url_of(raw_url: str) -> str:
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


class Engine:
    """Matches HTTP responses against loaded fingerprint rules."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        if config is None:
            config = default_config()
        else:
            if config.static_extensions is None:
                config.static_extensions = list(STATIC_FILE_EXTENSIONS)
            if config.static_content_types is None:
                config.static_content_types = list(STATIC_CONTENT_TYPES)
        self.config = config
        self.rule_manager = RuleManager()
        self._parser = DSLParser()
        self._icon_cache = IconCache()
        self._matches: list[FingerprintMatch] = []
        self._stats = Statistics()
        self._lock = threading.Lock()

    @property
    def output_formatter(self) -> Any:
        """The formatter results are handed to, if any."""
        return self.config.output_formatter

    def load_rules(self, rules_path: Union[str, os.PathLike]) -> None:
        """Load fingerprint rules from a file or directory."""
        self.rule_manager.load_rules(rules_path)

    def loaded_summary(self) -> str:
        """Summary of the rule files loaded last."""
        return self.rule_manager.loaded_summary()

    def analyze_response_with_client(
        self, response: HTTPResponse, http_client: Optional[HTTPClient]
    ) -> list[FingerprintMatch]:
        """Match a response, allowing ``icon()`` probes through the client."""
        return self._analyze(response, http_client, silent=False, emit_no_match=True)

    def analyze_response_passive(self, response: HTTPResponse) -> list[FingerprintMatch]:
        """Match a response using passive rules only."""
        return self._analyze(response, None, silent=False, emit_no_match=True)

    def analyze_response_with_client_no_no_match(
        self, response: HTTPResponse, http_client: Optional[HTTPClient]
    ) -> list[FingerprintMatch]:
        """Match a response without reporting responses in which nothing matched."""
        return self._analyze(response, http_client, silent=False, emit_no_match=False)

    def analyze_response_with_client_silent(self, response: HTTPResponse, http_client: Any) -> list[FingerprintMatch]:
        """Match a response without reporting anything to the formatter."""
        client = http_client if isinstance(http_client, HTTPClient) else None
        return self._analyze(response, client, silent=True, emit_no_match=False)

    def _analyze(
        self,
        response: HTTPResponse,
        http_client: Optional[HTTPClient],
        silent: bool,
        emit_no_match: bool,
    ) -> list[FingerprintMatch]:
        formatter = self.config.output_formatter

        if self.config.enable_filtering and self._should_filter(response):
            with self._lock:
                self._stats.filtered_requests += 1
            if not silent and emit_no_match and formatter is not None:
                formatter.format_no_match(response)
            return []

        with self._lock:
            self._stats.total_requests += 1

        ctx = self.create_context(response, http_client)
        if http_client is not None:
            logger.debug("context with active icon probing: %s (silent: %s)", ctx.base_url, silent)
        else:
            logger.debug("passive context, icon probing unavailable (silent: %s)", silent)

        matches = [
            match
            for match in (self.match_rule(rule, ctx) for rule in self.rule_manager.rules_snapshot())
            if match is not None
        ]

        if matches:
            with self._lock:
                self._stats.matched_requests += 1
                self._stats.last_match_time = datetime.now(timezone.utc)
                self._matches.extend(matches)
            if not silent and formatter is not None:
                formatter.format_match(matches, response)
            else:
                logger.debug("silent match finished, %d matches, output skipped", len(matches))
        elif not silent and emit_no_match and formatter is not None:
            formatter.format_no_match(response)

        return matches

    def matches(self) -> list[FingerprintMatch]:
        """A copy of every match recorded so far."""
        with self._lock:
            return list(self._matches)

    def stats(self) -> Statistics:
        """A copy of the engine's statistics."""
        with self._lock:
            return replace(self._stats)

    def rules_count(self) -> int:
        """Number of loaded rules."""
        return len(self.rule_manager)

    def create_context(
        self,
        response: Optional[HTTPResponse],
        http_client: Optional[HTTPClient] = None,
        base_url: str = "",
    ) -> DSLContext:
        """Build the evaluation context for a response."""
        headers: dict[str, list[str]] = {}
        if response is not None:
            headers = {name: list(values) for name, values in response.response_headers.items() if values}

        if not base_url and response is not None and response.url:
            base_url = _base_url_of(response.url)

        return DSLContext(
            response=response,
            headers=headers,
            body=response.body if response is not None else "",
            url=response.url if response is not None else "",
            method=response.method if response is not None else "",
            http_client=http_client,
            base_url=base_url,
            engine=self,
        )

    def match_rule(self, rule: FingerprintRule, ctx: DSLContext) -> Optional[FingerprintMatch]:
        """Return a match when the rule holds for the context, otherwise None."""
        if not rule.dsl:
            return None

        condition = rule.condition.strip().lower() or "or"

        if condition == "and":
            if not all(self._parser.evaluate(dsl, ctx) for dsl in rule.dsl):
                return None
            snippet = ""
            if self._should_capture_snippet(rule):
                for dsl in rule.dsl:
                    snippet = self._snippet_for(dsl, ctx)
                    if snippet:
                        break
            return FingerprintMatch(
                url=ctx.url,
                rule_name=rule.name,
                technology=rule.name,
                dsl_matched=f"AND({' && '.join(rule.dsl)})",
                snippet=snippet,
            )

        if condition != "or":
            logger.warning("unsupported condition type: %s, using OR", condition)
        for dsl in rule.dsl:
            if self._parser.evaluate(dsl, ctx):
                snippet = self._snippet_for(dsl, ctx) if self._should_capture_snippet(rule) else ""
                return FingerprintMatch(
                    url=ctx.url,
                    rule_name=rule.name,
                    technology=rule.name,
                    dsl_matched=dsl,
                    snippet=snippet,
                )
        return None

    def _should_capture_snippet(self, rule: Optional[FingerprintRule]) -> bool:
        return rule is not None and self.config.show_snippet

    def _snippet_for(self, dsl: str, ctx: Optional[DSLContext]) -> str:
        if ctx is None or not dsl.strip():
            return ""
        return self._parser.extract_snippet(dsl, ctx)

    def check_icon_match(
        self, icon_url: str, expected_hash: str, http_client: Optional[HTTPClient]
    ) -> Optional[bool]:
        """Whether the icon's hash matches, or None when it cannot be fetched."""
        return self._icon_cache.check_match(icon_url, expected_hash, http_client)

    def has_path_rules(self) -> bool:
        """Whether any rule carries probe paths."""
        return self.rule_manager.has_path_rules()

    def path_rules_count(self) -> int:
        """Total number of probe paths."""
        return self.rule_manager.path_rules_count()

    def header_rules_count(self) -> int:
        """Number of rules carrying custom headers."""
        return self.rule_manager.header_rules_count()

    def icon_rules(self) -> list[FingerprintRule]:
        """Rules that use ``icon()``."""
        return self.rule_manager.icon_rules()

    def _should_filter(self, response: HTTPResponse) -> bool:
        limit = self.config.max_body_size
        if limit > 0 and len(response.body) > limit:
            logger.debug("filtered large body: %s (%d bytes, limit %d)", response.url, len(response.body), limit)
            return True
        if self._is_static_file(response.url):
            logger.debug("filtered static file: %s", response.url)
            return True
        if self._is_static_content_type(response.content_type):
            logger.debug("filtered static content type: %s (%s)", response.url, response.content_type)
            return True
        return False

    def _is_static_file(self, raw_url: str) -> bool:
        extensions = self.config.static_extensions
        if not self.config.static_file_filter_enabled or not extensions:
            return False
        lowered = raw_url.lower()
        return any(ext and lowered.endswith(ext.lower()) for ext in extensions)

    def _is_static_content_type(self, content_type: str) -> bool:
        types = self.config.static_content_types
        if not self.config.content_type_filter_enabled or not types:
            return False
        lowered = content_type.lower()
        return any(kind and lowered.startswith(kind.lower()) for kind in types)

    def __deepcopy__(self, memo: dict) -> "Engine":
        clone = Engine(copy.deepcopy(self.config, memo))
        clone.rule_manager = self.rule_manager
        return clone