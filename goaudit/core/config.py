"""Analysis configuration: schema, validation, and JSON loading.

A run is configured by one immutable AnalysisConfig value that is passed to
every analyzer pass. Nothing here is process-wide mutable state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from goaudit.core.enums import Category, Severity, category_tokens, parse_severity
from goaudit.core.errors import ConfigurationError
from goaudit.core.versioning import GoVersion, parse_go_version
from goaudit.engine.sizes import PLATFORMS

logger = logging.getLogger(__name__)

ENTRY_POINT_KINDS = frozenset({"main", "tests", "exported"})


@dataclass(frozen=True)
class ConfigKey:
    type: type
    default: object
    description: str


CONFIG_SCHEMA: dict[str, ConfigKey] = {
    "target_version": ConfigKey(
        str, "1.22", "Go version findings may assume (gates modernization rules)"
    ),
    "categories": ConfigKey(
        list,
        [c.value for c in Category],
        "Finding categories to produce (subset of the six categories)",
    ),
    "min_severity": ConfigKey(
        str, "info", "Suppress findings below this severity (info/low/medium/high)"
    ),
    "entry_points": ConfigKey(
        list,
        ["main", "tests"],
        "Reachability roots: main, tests, exported, or fully-qualified handles",
    ),
    "platform": ConfigKey(str, "amd64", "Target GOARCH used for size/alignment rules"),
    "hot_field_threshold": ConfigKey(
        float, 8.0, "Access score at which a field counts as hot"
    ),
    "loop_weight": ConfigKey(
        float, 4.0, "Multiplier applied per enclosing loop level to field accesses"
    ),
    "large_interface_methods": ConfigKey(
        int, 5, "Method count at which an interface is flagged as oversized"
    ),
    "large_struct_bytes": ConfigKey(
        int, 128, "Struct size at which by-value parameters are flagged"
    ),
    "max_novel_words": ConfigKey(
        int, 0, "Novel words a comment may add and still count as content-free"
    ),
    "max_workers": ConfigKey(int, 5, "Thread pool size for analyzer passes"),
}


@dataclass(frozen=True)
class AnalysisConfig:
    target_version: GoVersion
    categories: frozenset[Category]
    min_severity: Severity
    entry_points: tuple[str, ...]
    platform: str
    hot_field_threshold: float
    loop_weight: float
    large_interface_methods: int
    large_struct_bytes: int
    max_novel_words: int
    max_workers: int

    def enabled(self, category: Category | str) -> bool:
        return Category(category) in self.categories

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_version": str(self.target_version),
            "categories": sorted(c.value for c in self.categories),
            "min_severity": self.min_severity.label,
            "entry_points": list(self.entry_points),
            "platform": self.platform,
            "hot_field_threshold": self.hot_field_threshold,
            "loop_weight": self.loop_weight,
            "large_interface_methods": self.large_interface_methods,
            "large_struct_bytes": self.large_struct_bytes,
            "max_novel_words": self.max_novel_words,
            "max_workers": self.max_workers,
        }


def default_config_values() -> dict[str, Any]:
    """Return raw config values with every key set to its default."""
    return {
        key: list(schema.default) if isinstance(schema.default, list) else schema.default
        for key, schema in CONFIG_SCHEMA.items()
    }


def _coerce_value(key: str, raw: object) -> object:
    schema = CONFIG_SCHEMA[key]
    if schema.type is float and isinstance(raw, int) and not isinstance(raw, bool):
        return float(raw)
    if schema.type is list and isinstance(raw, (tuple, set, frozenset)):
        return list(raw)
    if isinstance(raw, bool) and schema.type is not bool:
        raise ConfigurationError(f"{key}: expected {schema.type.__name__}, got bool")
    if not isinstance(raw, schema.type):
        raise ConfigurationError(
            f"{key}: expected {schema.type.__name__}, got {type(raw).__name__}"
        )
    return raw


def _parse_categories(values: list) -> frozenset[Category]:
    valid = category_tokens()
    unknown = [v for v in values if str(v) not in valid]
    if unknown:
        raise ConfigurationError(
            f"unknown categories: {', '.join(map(str, unknown))} "
            f"(expected: {', '.join(sorted(valid))})"
        )
    return frozenset(Category(str(v)) for v in values)


def _parse_entry_points(values: list) -> tuple[str, ...]:
    parsed: list[str] = []
    for value in values:
        token = str(value).strip()
        if token in ENTRY_POINT_KINDS or "." in token:
            parsed.append(token)
            continue
        raise ConfigurationError(
            f"invalid entry point {value!r}: expected main, tests, exported, "
            "or a fully-qualified handle"
        )
    return tuple(dict.fromkeys(parsed))


def build_config(**overrides: Any) -> AnalysisConfig:
    """Validate raw values against CONFIG_SCHEMA and build an AnalysisConfig."""
    unknown = sorted(set(overrides) - set(CONFIG_SCHEMA))
    if unknown:
        raise ConfigurationError(f"unknown config keys: {', '.join(unknown)}")

    values = default_config_values()
    for key, raw in overrides.items():
        if raw is None:
            continue
        values[key] = _coerce_value(key, raw)

    try:
        target_version = parse_go_version(values["target_version"])
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    try:
        min_severity = parse_severity(values["min_severity"])
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    platform = values["platform"]
    if platform not in PLATFORMS:
        raise ConfigurationError(
            f"unknown platform {platform!r} (expected: {', '.join(sorted(PLATFORMS))})"
        )
    for key in ("hot_field_threshold", "loop_weight"):
        if values[key] <= 0:
            raise ConfigurationError(f"{key} must be positive")
    for key in ("large_interface_methods", "large_struct_bytes", "max_workers"):
        if values[key] < 1:
            raise ConfigurationError(f"{key} must be at least 1")
    if values["max_novel_words"] < 0:
        raise ConfigurationError("max_novel_words must not be negative")

    return AnalysisConfig(
        target_version=target_version,
        categories=_parse_categories(values["categories"]),
        min_severity=min_severity,
        entry_points=_parse_entry_points(values["entry_points"]),
        platform=platform,
        hot_field_threshold=values["hot_field_threshold"],
        loop_weight=values["loop_weight"],
        large_interface_methods=values["large_interface_methods"],
        large_struct_bytes=values["large_struct_bytes"],
        max_novel_words=values["max_novel_words"],
        max_workers=values["max_workers"],
    )


def load_config(path: Path, **overrides: Any) -> AnalysisConfig:
    """Load a JSON config object from disk; explicit overrides win."""
    try:
        raw = json.loads(Path(path).read_text())
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"config {path} must contain a JSON object")
    merged = {**raw, **{k: v for k, v in overrides.items() if v is not None}}
    logger.debug("Loaded config from %s (%d keys)", path, len(raw))
    return build_config(**merged)


def config_field_names() -> tuple[str, ...]:
    return tuple(f.name for f in fields(AnalysisConfig))


__all__ = [
    "AnalysisConfig",
    "CONFIG_SCHEMA",
    "ConfigKey",
    "ENTRY_POINT_KINDS",
    "build_config",
    "config_field_names",
    "default_config_values",
    "load_config",
]
