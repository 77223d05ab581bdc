# src/switchyard/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict
import yaml

KNOWN_PROVIDERS = ("local", "openai", "google_gemini", "anthropic")
SECRET_METHODS = ("keyring", "env", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    pass


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    return cur


def _optional_section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Validate required keys (no defaults here)
    _require(raw, "secrets.method", str)   # 'keyring', 'env' or 'memory'
    _require(raw, "runtime.stream", bool)
    _require(raw, "logging.level", str)

    # Normalise enumerations
    method = raw["secrets"]["method"].lower()
    level = raw["logging"]["level"].upper()
    if method not in SECRET_METHODS:
        raise ConfigError(f"Unknown secrets.method '{method}' (expected one of {', '.join(SECRET_METHODS)}).")
    if level not in LOG_LEVELS:
        raise ConfigError(f"Unknown logging.level '{level}' (expected one of {', '.join(LOG_LEVELS)}).")
    raw["secrets"]["method"] = method
    raw["logging"]["level"] = level

    providers = _optional_section(raw, "providers")
    for kind, section in providers.items():
        if kind not in KNOWN_PROVIDERS:
            raise ConfigError(f"Unknown provider '{kind}' under providers (expected one of {', '.join(KNOWN_PROVIDERS)}).")
        if section is not None and not isinstance(section, dict):
            raise ConfigError(f"'providers.{kind}' must be a mapping")
    raw["providers"] = providers

    for name in ("preferences", "accounting"):
        raw[name] = _optional_section(raw, name)

    # Leave paths as provided; resolve them later in bootstrap/composition
    return raw
