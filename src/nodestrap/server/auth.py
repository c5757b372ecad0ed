# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/server/auth.py

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from requests.auth import AuthBase
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

SIGN_VERSION = "1.3"
SERVER_API_VERSION = "1"
_LINE_WIDTH = 60


def _b64_digest(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


class SignedHeaderAuth(AuthBase):
    """
    Signs every request as ``client_name`` with its RSA private key
    (X-Ops-Sign version 1.3: SHA-256 over the canonical request).
    """

    def __init__(self, client_name: str, key_pem: bytes):
        self.client_name = client_name
        self._key = serialization.load_pem_private_key(key_pem, password=None)

    @classmethod
    def from_key_file(cls, client_name: str, key_path: str | Path) -> "SignedHeaderAuth":
        return cls(client_name, Path(key_path).expanduser().read_bytes())

    def canonical_request(self, method: str, path: str, content_hash: str, timestamp: str) -> bytes:
        return "\n".join(
            [
                f"Method:{method.upper()}",
                f"Path:{path}",
                f"X-Ops-Content-Hash:{content_hash}",
                f"X-Ops-Sign:version={SIGN_VERSION}",
                f"X-Ops-Timestamp:{timestamp}",
                f"X-Ops-UserId:{self.client_name}",
                f"X-Ops-Server-API-Version:{SERVER_API_VERSION}",
            ]
        ).encode("utf-8")

    def signed_headers(
        self,
        method: str,
        path: str,
        body: bytes = b"",
        *,
        timestamp: Optional[str] = None,
    ) -> Dict[str, str]:
        timestamp = timestamp or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        content_hash = _b64_digest(body)
        signature = self._key.sign(
            self.canonical_request(method, path, content_hash, timestamp),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        encoded = base64.b64encode(signature).decode("ascii")

        headers = {
            "X-Ops-Sign": f"algorithm=sha256;version={SIGN_VERSION}",
            "X-Ops-Userid": self.client_name,
            "X-Ops-Timestamp": timestamp,
            "X-Ops-Content-Hash": content_hash,
            "X-Ops-Server-API-Version": SERVER_API_VERSION,
        }
        for i in range(0, len(encoded), _LINE_WIDTH):
            headers[f"X-Ops-Authorization-{i // _LINE_WIDTH + 1}"] = encoded[i:i + _LINE_WIDTH]
        return headers

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        body = r.body or b""
        if isinstance(body, str):
            body = body.encode("utf-8")
        r.headers.update(self.signed_headers(r.method, urlparse(r.url).path, body))
        return r
