# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/config/loader.py

import json
import logging
import os
from pathlib import Path

import yaml

from .models import ServerConfig, VaultUpdateSpec

log = logging.getLogger("nodestrap")

DEFAULT_CONFIG_PATH = Path.home() / ".nodestrap" / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml:

    1. NODESTRAP_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the config
    """
    env = os.environ.get("NODESTRAP_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("NODESTRAP_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    env = os.environ.get("NODESTRAP_CONFIG")
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: str | Path | None = None) -> ServerConfig:
    """
    Load and validate the server configuration.

    A missing file at the default location yields defaults; a missing file
    that was asked for explicitly is an error. Key paths are resolved
    relative to the config directory.
    """
    explicit = path is not None or "NODESTRAP_CONFIG" in os.environ
    path = resolve_config_path(path)

    if not path.is_file():
        if explicit:
            raise FileNotFoundError(f"Config file not found: {path}")
        log.debug("No config at %s, using defaults", path)
        return ServerConfig()

    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))

    for key in ("client_key", "validation_key"):
        if data.get(key):
            data[key] = (path.parent / Path(data[key]).expanduser()).resolve()

    data["config_dir"] = path.parent
    return ServerConfig.model_validate(data)


def load_vault_file(path: str | Path) -> VaultUpdateSpec:
    """Read a JSON vault spec ({"vault": "item"} or {"vault": ["a", "b"]})."""
    return _parse_vault_spec(Path(path).read_text(), source=str(path))


def load_vault_list(text: str) -> VaultUpdateSpec:
    return _parse_vault_spec(text, source="--vault-list")


def _parse_vault_spec(text: str, *, source: str) -> VaultUpdateSpec:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {source}, got {type(data).__name__}")
    return data
