"""Loading and bookkeeping of fingerprint rules."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from veo.types import FingerprintRule

logger = logging.getLogger(__name__)


class RuleLoadError(Exception):
    """Raised when fingerprint rules cannot be loaded."""


class RuleManager:
    """Loads fingerprint rules from YAML files and answers questions about them."""

    def __init__(self) -> None:
        self._rules: dict[str, FingerprintRule] = {}
        self._snapshot: tuple[FingerprintRule, ...] = ()
        self._summaries: list[str] = []
        self._lock = threading.RLock()

    def load_rules(self, rules_path: Union[str, os.PathLike]) -> None:
        """Load rules from a YAML file or from every ``.yaml`` file in a directory."""
        path = Path(rules_path)
        with self._lock:
            logger.debug("loading fingerprint rules: %s", path)
            try:
                is_dir = path.stat() and path.is_dir()
            except OSError as exc:
                raise RuleLoadError(f"rules path does not exist: {exc}") from exc

            if is_dir:
                files = self._yaml_files(path)
                if not files:
                    raise RuleLoadError(f"no YAML files found in directory: {path}")
                logger.debug("found %d YAML files", len(files))
            else:
                files = [path]

            self._summaries = []
            total = 0
            for yaml_file in files:
                try:
                    count = self._load_file(yaml_file)
                except RuleLoadError as exc:
                    logger.warning("failed to load rules file %s: %s", yaml_file.name, exc)
                    continue
                summary = f"{yaml_file.name}:{count}"
                self._summaries.append(summary)
                logger.debug("loaded fingerprint rules: %s", summary)
                total += count

            self._snapshot = tuple(self._rules.values())
            logger.debug("rule loading finished, %d rules loaded", total)

    @staticmethod
    def _yaml_files(directory: Path) -> list[Path]:
        try:
            with os.scandir(directory) as entries:
                names = sorted(
                    entry.name
                    for entry in entries
                    if not entry.is_dir(follow_symlinks=False) and entry.name.lower().endswith(".yaml")
                )
        except OSError as exc:
            raise RuleLoadError(f"failed to read directory: {exc}") from exc
        return [directory / name for name in names]

    def _load_file(self, file_path: Path) -> int:
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise RuleLoadError(f"failed to read file: {exc}") from exc
        try:
            document: Any = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise RuleLoadError(f"failed to parse YAML: {exc}") from exc

        if document is None:
            document = {}
        if not isinstance(document, Mapping):
            raise RuleLoadError("rules file must hold a mapping of rule names to rules")

        parsed: list[FingerprintRule] = []
        for key, value in document.items():
            if value is None:
                continue
            try:
                parsed.append(FingerprintRule.from_dict(str(key), value))
            except ValueError as exc:
                raise RuleLoadError(f"failed to parse YAML: {exc}") from exc

        sensitive = "sensitive" in file_path.name.lower()
        for rule in parsed:
            if sensitive and not rule.category.strip():
                rule.category = "sensitive"
            existing = self._rules.get(rule.name)
            if existing is not None:
                logger.warning("rule id conflict: %s (file %s overrides the earlier rule)", rule.name, file_path.name)
                logger.debug("  old rule dsl: %s", existing.dsl)
                logger.debug("  new rule dsl: %s", rule.dsl)
            self._rules[rule.name] = rule
        return len(parsed)

    def rules_snapshot(self) -> list[FingerprintRule]:
        """Return the rules as of the last load."""
        with self._lock:
            return list(self._snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def loaded_summary(self) -> str:
        """Return ``"file:count"`` entries of the last load, space separated."""
        with self._lock:
            return " ".join(self._summaries)

    def path_rules(self) -> list[FingerprintRule]:
        """Rules that carry paths for active probing."""
        with self._lock:
            return [rule for rule in self._rules.values() if rule.has_paths()]

    def header_rules(self) -> list[FingerprintRule]:
        """Rules that carry custom request headers."""
        with self._lock:
            return [rule for rule in self._rules.values() if rule.has_headers()]

    def header_rules_count(self) -> int:
        """Number of rules carrying custom headers."""
        with self._lock:
            return sum(1 for rule in self._rules.values() if rule.has_headers())

    def path_rules_count(self) -> int:
        """Total number of probe paths over all rules."""
        with self._lock:
            return sum(len(rule.paths) for rule in self._rules.values())

    def has_path_rules(self) -> bool:
        """Whether any rule carries probe paths."""
        with self._lock:
            return any(rule.has_paths() for rule in self._rules.values())

    def icon_rules(self) -> list[FingerprintRule]:
        """Rules with at least one DSL expression using ``icon()``."""
        with self._lock:
            return [rule for rule in self._rules.values() if any("icon(" in dsl for dsl in rule.dsl)]