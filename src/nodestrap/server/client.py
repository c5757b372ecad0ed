# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/server/client.py

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.auth import AuthBase
from requests.utils import should_bypass_proxies

from nodestrap.config.models import ServerConfig
from nodestrap.errors import DirectoryServerError, ResourceNotFound
from .auth import SignedHeaderAuth

log = logging.getLogger("nodestrap")


class DirectoryClient:
    """
    Thin JSON client for the configuration server.

    Every call raises ResourceNotFound on 404 and DirectoryServerError on any
    other failure; callers decide whether "missing" is an error.
    """

    def __init__(
        self,
        config: ServerConfig,
        auth: Optional[AuthBase] = None,
        *,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.auth = auth
        self.session = session or requests.Session()

        proxies = {}
        if config.http_proxy:
            proxies["http"] = config.http_proxy
        if config.https_proxy:
            proxies["https"] = config.https_proxy
        self.session.proxies.update(proxies)

    @classmethod
    def from_config(cls, config: ServerConfig, **kwargs) -> "DirectoryClient":
        """Client authenticated as the invoking user from the config."""
        auth = None
        if config.client_name and config.client_key:
            auth = SignedHeaderAuth.from_key_file(config.client_name, config.client_key)
        return cls(config, auth, **kwargs)

    def as_client(self, client_name: str, key_path: str | Path) -> "DirectoryClient":
        """Same server, different identity."""
        return DirectoryClient(
            self.config,
            SignedHeaderAuth.from_key_file(client_name, key_path),
            session=requests.Session(),
        )

    # -----------------------
    # HTTP helpers
    # -----------------------
    def _url(self, path: str) -> str:
        return f"{self.config.server_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, body: Any = None, params: Optional[dict] = None) -> Any:
        url = self._url(path)
        data = json.dumps(body) if body is not None else None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"

        proxies = None
        if self.config.no_proxy and should_bypass_proxies(url, no_proxy=self.config.no_proxy):
            # None drops the session proxy for this request
            proxies = {"http": None, "https": None}

        log.debug("[server] %s %s", method, url)
        try:
            r = self.session.request(
                method,
                url,
                data=data,
                params=params,
                headers=headers,
                proxies=proxies,
                auth=self.auth,
                verify=self.config.verify_tls,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise DirectoryServerError(f"{method} {url} failed: {e}") from e

        if r.status_code == 404:
            raise ResourceNotFound(f"{method} {url}: not found", status=404)
        if r.status_code < 200 or r.status_code >= 300:
            raise DirectoryServerError(
                f"{method} {url} failed: {r.status_code} {r.text}",
                status=r.status_code,
            )
        if not r.content:
            return {}
        return r.json()

    # -----------------------
    # Resource operations
    # -----------------------
    def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, body: Dict[str, Any]) -> Any:
        return self._request("POST", path, body)

    def put(self, path: str, body: Dict[str, Any]) -> Any:
        return self._request("PUT", path, body)

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    def exists(self, path: str) -> bool:
        try:
            self.get(path)
        except ResourceNotFound:
            return False
        return True

    def search(self, index: str, query: str) -> Dict[str, Any]:
        return self.get(f"search/{index}", params={"q": query})
