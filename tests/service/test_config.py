# tests/service/test_config.py
# SPDX-License-Identifier: Apache-2.0
"""
Provider configuration loading.

Asserts:
  • Sources come from the "provider-knowledge" section of the JSON file
  • Environment values override file values
  • Sources without a URL are skipped
  • Invalid files and policies raise ConfigError
"""

import json

import pytest

from knowledge_sdk.config import ConfigError, load_config, parse_sources


def _write(tmp_path, section):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"provider-knowledge": section}), encoding="utf-8")
    return str(path)


def test_sources_from_file(tmp_path):
    path = _write(tmp_path, {"sources": {"g": {"url": "https://host/KnowledgeGraphServer", "token": "t"}}})
    config = load_config(path, env={})
    assert config.sources["g"].url == "https://host/KnowledgeGraphServer"
    assert config.sources["g"].token == "t"
    assert config.spatial_filter_errors == "skip"
    assert config.log_level == "INFO"


def test_environment_overrides(tmp_path):
    path = _write(tmp_path, {"sources": {"g": {"url": "https://a"}}, "logLevel": "warning"})
    env = {
        "KNOWLEDGE_SOURCES": json.dumps({"g": {"url": "https://b"}, "h": {"url": "https://c"}}),
        "KNOWLEDGE_LOG_LEVEL": "debug",
        "KNOWLEDGE_SPATIAL_FILTER_ERRORS": "raise",
    }
    config = load_config(path, env=env)
    assert config.sources["g"].url == "https://b"
    assert set(config.sources) == {"g", "h"}
    assert config.log_level == "DEBUG"
    assert config.spatial_filter_errors == "raise"


def test_config_path_from_environment(tmp_path):
    path = _write(tmp_path, {"sources": {"g": {"url": "https://a"}}})
    assert set(load_config(env={"KNOWLEDGE_CONFIG": path}).sources) == {"g"}


def test_missing_default_file_yields_empty_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config(env={})
    assert config.sources == {}


def test_missing_explicit_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.json"), env={})


def test_blank_url_is_skipped(caplog):
    sources = parse_sources({"a": {"url": "  "}, "b": {"url": "https://b"}})
    assert list(sources) == ["b"]
    assert "skipping source 'a'" in caplog.text


def test_invalid_policy_raises(tmp_path):
    path = _write(tmp_path, {"spatialFilterErrors": "ignore"})
    with pytest.raises(ConfigError):
        load_config(path, env={})


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{nope", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path), env={})
    with pytest.raises(ConfigError):
        load_config(env={"KNOWLEDGE_CONFIG": str(path)})
