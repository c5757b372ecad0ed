# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/bootstrap/context.py

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from nodestrap.config.models import BootstrapRequest, ServerConfig

DEFAULT_INSTALL_URL = "https://omnitruck.chef.io/install.sh"
CLIENT_CONFIG_DIR = "/etc/chef"


@dataclass(frozen=True)
class RenderContext:
    """
    Snapshot handed to the bootstrap template as ``ctx``.

    Templates call the methods below; nothing here touches the network or
    mutates state, so rendering the same context twice gives the same script.
    """

    request: BootstrapRequest
    run_list: Tuple[str, ...]
    server: ServerConfig
    secret: Optional[str] = None
    client_pem: Optional[str] = None
    validation_pem: Optional[str] = None

    @classmethod
    def build(
        cls,
        request: BootstrapRequest,
        server: ServerConfig,
        *,
        secret: Optional[str] = None,
        client_pem: Optional[str] = None,
    ) -> "RenderContext":
        validation_pem = None
        # a registered client key replaces the validator on the node
        if client_pem is None and server.validation_key and server.validation_key.is_file():
            validation_pem = server.validation_key.read_text()
        return cls(
            request=request,
            run_list=tuple(request.run_list),
            server=server,
            secret=secret if secret is not None else request.secret,
            client_pem=client_pem,
            validation_pem=validation_pem,
        )

    # ------------------ simple values ------------------

    @property
    def node_name(self) -> Optional[str]:
        return self.request.effective_node_name

    @property
    def bootstrap_environment(self) -> str:
        return self.request.environment or "_default"

    @property
    def encrypted_data_bag_secret(self) -> Optional[str]:
        return self.secret

    @property
    def hints(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.request.hints)

    @property
    def install_url(self) -> str:
        return self.request.bootstrap_url or DEFAULT_INSTALL_URL

    @property
    def install_command(self) -> Optional[str]:
        return self.request.bootstrap_install_command

    @property
    def proxy(self) -> Optional[str]:
        return self.request.bootstrap_proxy

    @property
    def no_proxy(self) -> Optional[str]:
        return self.request.bootstrap_no_proxy

    @property
    def wget_options(self) -> str:
        return self.request.bootstrap_wget_options or ""

    @property
    def curl_options(self) -> str:
        return self.request.bootstrap_curl_options or ""

    def validation_key(self) -> str:
        return self.validation_pem or ""

    def latest_version_string(self) -> str:
        """install.sh arguments selecting the client version."""
        if self.request.bootstrap_version:
            return f"-v {self.request.bootstrap_version}"
        if self.request.prerelease:
            return "-p"
        return ""

    # ------------------ rendered files ------------------

    def config_content(self) -> str:
        """client.rb for the new node."""
        lines = [
            "log_location     STDOUT",
            f'chef_server_url  "{self.server.server_url}"',
            f'validation_client_name "{self.server.validation_client_name}"',
        ]
        if self.node_name:
            lines.append(f'node_name "{self.node_name}"')

        if self.proxy:
            lines.append(f'http_proxy        "{self.proxy}"')
            lines.append(f'https_proxy       "{self.proxy}"')
        if self.no_proxy:
            lines.append(f'no_proxy          "{self.no_proxy}"')

        if self.request.node_ssl_verify_mode:
            lines.append(f"ssl_verify_mode :verify_{self.request.node_ssl_verify_mode}")
        if self.request.node_verify_api_cert is not None:
            lines.append(f"verify_api_cert {str(self.request.node_verify_api_cert).lower()}")

        if self.secret:
            lines.append(f'encrypted_data_bag_secret "{CLIENT_CONFIG_DIR}/encrypted_data_bag_secret"')
        return "\n".join(lines)

    def first_boot(self) -> Dict[str, Any]:
        attrs = dict(self.request.first_boot_attributes)
        attrs["run_list"] = list(self.run_list)
        return attrs

    def first_boot_json(self) -> str:
        return json.dumps(self.first_boot(), sort_keys=True)

    def start_chef(self) -> str:
        cmd = f"chef-client -j {CLIENT_CONFIG_DIR}/first-boot.json"
        if self.request.environment:
            cmd += f" -E {self.bootstrap_environment}"
        return cmd
