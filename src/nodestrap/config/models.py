# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/config/models.py

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TEMPLATE = "chef-full"

VaultUpdateSpec = Dict[str, Union[str, List[str]]]


def normalize_run_list(value: Any) -> List[str]:
    """
    "a, b,c" -> ["a", "b", "c"]; lists pass through; None -> [].
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [item for item in re.split(r"[\s,]+", value) if item]
    return list(value)


class ServerConfig(BaseModel):
    """Directory/API server settings, the knife.rb equivalent."""

    server_url: str = "https://localhost"
    client_name: Optional[str] = None          # invoking user/client
    client_key: Optional[Path] = None          # its private key
    validation_client_name: str = "chef-validator"
    validation_key: Optional[Path] = None
    ssl_verify_mode: Literal["peer", "none"] = "peer"
    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    no_proxy: Optional[str] = None
    request_timeout: float = 30.0
    # search visibility wait after registration
    node_wait_attempts: int = 10
    node_wait_delay: float = 3.0
    # directory the config was loaded from; site-local templates live below it
    config_dir: Optional[Path] = None

    @property
    def verify_tls(self) -> bool:
        return self.ssl_verify_mode == "peer"


class SshSettings(BaseModel):
    user: str = "root"
    password: Optional[str] = None
    port: int = 22
    gateway: Optional[str] = None              # [user@]host[:port]
    identity_file: Optional[Path] = None
    forward_agent: bool = False
    host_key_verify: bool = True
    connect_timeout: float = 30.0


class SudoSettings(BaseModel):
    use_sudo: bool = False
    use_sudo_password: bool = False


class BootstrapRequest(BaseModel):
    """
    Everything a single bootstrap run needs. Built by the CLI, never mutated
    afterwards.
    """

    model_config = ConfigDict(frozen=True)

    target: Optional[str] = None
    node_name: Optional[str] = None
    run_list: List[str] = Field(default_factory=list)
    first_boot_attributes: Dict[str, Any] = Field(default_factory=dict)
    environment: Optional[str] = None
    template: str = DEFAULT_TEMPLATE

    ssh: SshSettings = Field(default_factory=SshSettings)
    sudo: SudoSettings = Field(default_factory=SudoSettings)

    overwrite_node: bool = False
    # register with the validation key on the node instead of our own client
    bootstrap_uses_validator: bool = False
    vault_list: Optional[VaultUpdateSpec] = None
    vault_file: Optional[VaultUpdateSpec] = None

    # install tunables rendered into the template
    bootstrap_version: Optional[str] = None
    prerelease: bool = False
    bootstrap_proxy: Optional[str] = None
    bootstrap_no_proxy: Optional[str] = None
    bootstrap_url: Optional[str] = None
    bootstrap_install_command: Optional[str] = None
    bootstrap_wget_options: Optional[str] = None
    bootstrap_curl_options: Optional[str] = None
    node_ssl_verify_mode: Optional[Literal["peer", "none"]] = None
    node_verify_api_cert: Optional[bool] = None
    hints: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    secret: Optional[str] = None

    @field_validator("target", "node_name", mode="before")
    @classmethod
    def _strip_names(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("run_list", mode="before")
    @classmethod
    def _normalize_run_list(cls, v):
        return normalize_run_list(v)

    @field_validator("first_boot_attributes", mode="before")
    @classmethod
    def _parse_attributes(cls, v):
        if v is None:
            return {}
        if isinstance(v, str):
            return json.loads(v)
        return v

    @property
    def effective_node_name(self) -> Optional[str]:
        return self.node_name or self.target

    @property
    def wants_vault(self) -> bool:
        return bool(self.vault_list or self.vault_file)

    @property
    def wants_registration(self) -> bool:
        # vault grants need the client to exist
        return self.wants_vault or not self.bootstrap_uses_validator
