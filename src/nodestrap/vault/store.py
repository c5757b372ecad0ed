# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/vault/store.py

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Dict, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding

from nodestrap.errors import ItemNotFound, KeysNotFound, ResourceNotFound, VaultError
from nodestrap.server.client import DirectoryClient

log = logging.getLogger("nodestrap")


class VaultItem(Protocol):
    def grant_access(self, client_name: str) -> None: ...
    def save(self) -> None: ...


class SecretStore(Protocol):
    def load_item(self, vault: str, item: str) -> VaultItem: ...


class DataBagVaultItem:
    """
    A vault item stored as two data bag items: ``<item>`` holds the data
    encrypted with a shared secret, ``<item>_keys`` holds that secret
    encrypted once per client/admin public key. Granting access only touches
    the keys item.
    """

    def __init__(self, store: "DataBagVaultStore", vault: str, item: str, keys: Dict[str, Any]):
        self.store = store
        self.vault = vault
        self.item = item
        self.keys = keys

    @property
    def clients(self) -> list:
        return list(self.keys.get("clients", []))

    def _shared_secret(self) -> bytes:
        encrypted = self.keys.get(self.store.user_name)
        if not encrypted:
            raise VaultError(f"{self.store.user_name} has no access to {self.vault}/{self.item}")
        return self.store.private_key.decrypt(base64.b64decode(encrypted), padding.PKCS1v15())

    def grant_access(self, client_name: str) -> None:
        public_key = serialization.load_pem_public_key(
            self.store.client_public_key(client_name).encode("utf-8")
        )
        encrypted = public_key.encrypt(self._shared_secret(), padding.PKCS1v15())
        self.keys[client_name] = base64.encodebytes(encrypted).decode("ascii")
        clients = self.keys.setdefault("clients", [])
        if client_name not in clients:
            clients.append(client_name)
        log.debug("[vault] granted %s on %s/%s", client_name, self.vault, self.item)

    def save(self) -> None:
        self.store.client.put(f"data/{self.vault}/{self.item}_keys", self.keys)


class DataBagVaultStore:
    def __init__(self, client: DirectoryClient, user_name: str, user_key: str | Path):
        self.client = client
        self.user_name = user_name
        self.private_key = serialization.load_pem_private_key(
            Path(user_key).expanduser().read_bytes(), password=None
        )

    def load_item(self, vault: str, item: str) -> DataBagVaultItem:
        try:
            self.client.get(f"data/{vault}/{item}")
        except ResourceNotFound as e:
            raise ItemNotFound(f"{vault}/{item} could not be found") from e
        try:
            keys = self.client.get(f"data/{vault}/{item}_keys")
        except ResourceNotFound as e:
            raise KeysNotFound(f"{vault}/{item}_keys could not be found") from e
        return DataBagVaultItem(self, vault, item, dict(keys))

    def client_public_key(self, client_name: str) -> str:
        record = self.client.get(f"clients/{client_name}")
        if record.get("public_key"):
            return record["public_key"]
        return self.client.get(f"clients/{client_name}/keys/default")["public_key"]
