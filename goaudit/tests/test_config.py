"""Tests for configuration validation and loading."""

from __future__ import annotations

import json

import pytest

from goaudit.core.config import (
    CONFIG_SCHEMA,
    build_config,
    config_field_names,
    default_config_values,
    load_config,
)
from goaudit.core.enums import Category, Severity, parse_severity
from goaudit.core.errors import ConfigurationError
from goaudit.core.versioning import GoVersion, parse_go_version


def test_defaults_match_schema():
    config = build_config()
    assert config.target_version == GoVersion(1, 22)
    assert config.categories == frozenset(Category)
    assert config.min_severity == Severity.INFO
    assert config.entry_points == ("main", "tests")
    assert config.platform == "amd64"
    assert config.hot_field_threshold == 8.0
    assert config.loop_weight == 4.0
    assert config.large_interface_methods == 5
    assert config.large_struct_bytes == 128
    assert config.max_novel_words == 0
    assert config.max_workers == 5


def test_schema_covers_every_config_field():
    assert set(CONFIG_SCHEMA) == set(config_field_names())
    assert set(default_config_values()) == set(CONFIG_SCHEMA)


def test_overrides_are_parsed():
    config = build_config(
        target_version="go1.21.3",
        categories=["layout", "comment"],
        min_severity="medium",
        platform="386",
        hot_field_threshold=3,
        entry_points=["exported", "example.com/app.Run"],
    )
    assert config.target_version == GoVersion(1, 21, 3)
    assert config.categories == {Category.LAYOUT, Category.COMMENT}
    assert config.min_severity == Severity.MEDIUM
    assert config.platform == "386"
    assert config.hot_field_threshold == 3.0
    assert config.entry_points == ("exported", "example.com/app.Run")
    assert config.enabled("layout")
    assert not config.enabled(Category.ENTROPY)


def test_none_override_keeps_default():
    assert build_config(platform=None).platform == "amd64"


@pytest.mark.parametrize(
    "overrides",
    [
        {"bogus": 1},
        {"target_version": "2"},
        {"categories": ["layout", "style"]},
        {"min_severity": "critical"},
        {"platform": "sparc"},
        {"max_workers": 0},
        {"loop_weight": -1.0},
        {"max_novel_words": -1},
        {"large_struct_bytes": True},
        {"entry_points": ["everything"]},
        {"categories": "layout"},
    ],
)
def test_invalid_values_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        build_config(**overrides)


def test_load_config_merges_file_and_overrides(tmp_path):
    path = tmp_path / "goaudit.json"
    path.write_text(json.dumps({"target_version": "1.20", "min_severity": "low"}))
    config = load_config(path, min_severity="high")
    assert config.target_version == GoVersion(1, 20)
    assert config.min_severity == Severity.HIGH


def test_load_config_rejects_non_object(tmp_path):
    path = tmp_path / "goaudit.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigurationError, match="JSON object"):
        load_config(path)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="cannot read config"):
        load_config(tmp_path / "missing.json")


def test_to_dict_round_trips_through_build_config():
    config = build_config(target_version="1.24", categories=["entropy"])
    assert build_config(**config.to_dict()) == config


def test_go_version_ordering_and_errors():
    assert parse_go_version("1.9") < parse_go_version("1.22")
    assert str(parse_go_version("go1.23rc1")) == "1.23"
    with pytest.raises(ValueError):
        parse_go_version("latest")


def test_parse_severity_accepts_labels_and_ints():
    assert parse_severity("High") == Severity.HIGH
    assert parse_severity(1) == Severity.LOW
    assert Severity.MEDIUM.label == "medium"
    with pytest.raises(ValueError):
        parse_severity("urgent")
