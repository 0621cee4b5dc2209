# knowledge_sdk/config.py
# SPDX-License-Identifier: Apache-2.0
"""
Provider configuration.

Sources are read from a JSON file and then overridden from the environment:

    {
      "provider-knowledge": {
        "sources": {
          "myGraph": {"url": "https://.../KnowledgeGraphServer", "token": "..."}
        }
      }
    }

Environment:
  KNOWLEDGE_CONFIG                 Path of the JSON file (default: config/default.json)
  KNOWLEDGE_SOURCES                JSON object with the same shape as `sources`
  KNOWLEDGE_LOG_LEVEL              Logging level name (default: INFO)
  KNOWLEDGE_SPATIAL_FILTER_ERRORS  "skip" or "raise" (default: skip)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from knowledge_sdk.graph.cypher_builder import SPATIAL_POLICIES

LOG = logging.getLogger(__name__)

CONFIG_SECTION = "provider-knowledge"
DEFAULT_CONFIG_PATH = os.path.join("config", "default.json")


class ConfigError(ValueError):
    """Invalid provider configuration."""


@dataclass(frozen=True)
class SourceConfig:
    url: str
    token: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    sources: Mapping[str, SourceConfig] = field(default_factory=dict)
    log_level: str = "INFO"
    spatial_filter_errors: str = "skip"
    referer: Optional[str] = "http://koopjs.esri.com"


def parse_sources(raw: Any) -> Dict[str, SourceConfig]:
    """Build source configs, skipping entries without a URL."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError("sources must be a JSON object")
    sources: Dict[str, SourceConfig] = {}
    for key, value in raw.items():
        if not isinstance(value, Mapping):
            raise ConfigError(f"source {key!r} must be an object")
        url = str(value.get("url") or "").strip()
        if not url:
            LOG.warning("skipping source %r: no url configured", key)
            continue
        sources[key] = SourceConfig(url=url, token=value.get("token") or None)
    return sources


def _read_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except ValueError as e:
        raise ConfigError(f"config file {path} is not valid JSON") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data.get(CONFIG_SECTION) or {}


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> ProviderConfig:
    env = os.environ if env is None else env
    explicit = path or env.get("KNOWLEDGE_CONFIG")
    path = explicit or DEFAULT_CONFIG_PATH

    section: Dict[str, Any] = {}
    if os.path.exists(path):
        section = _read_file(path)
        LOG.debug("loaded config from %s", path)
    elif explicit:
        raise ConfigError(f"config file {path} does not exist")

    sources = parse_sources(section.get("sources"))
    if env.get("KNOWLEDGE_SOURCES"):
        try:
            overrides = json.loads(env["KNOWLEDGE_SOURCES"])
        except ValueError as e:
            raise ConfigError("KNOWLEDGE_SOURCES is not valid JSON") from e
        sources.update(parse_sources(overrides))

    policy = env.get("KNOWLEDGE_SPATIAL_FILTER_ERRORS") or section.get("spatialFilterErrors") or "skip"
    if policy not in SPATIAL_POLICIES:
        raise ConfigError(f"spatial filter policy must be one of {SPATIAL_POLICIES}, got {policy!r}")

    return ProviderConfig(
        sources=sources,
        log_level=(env.get("KNOWLEDGE_LOG_LEVEL") or section.get("logLevel") or "INFO").upper(),
        spatial_filter_errors=policy,
        referer=section.get("referer", ProviderConfig.referer),
    )


__all__ = [
    "ConfigError",
    "SourceConfig",
    "ProviderConfig",
    "parse_sources",
    "load_config",
]
