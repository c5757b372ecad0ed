# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/vault/distributor.py

from __future__ import annotations

import logging

from nodestrap.config.models import VaultUpdateSpec
from nodestrap.errors import ItemNotFound, KeysNotFound, VaultItemMissing
from .store import SecretStore

log = logging.getLogger("nodestrap")


class SecretDistributor:
    """
    Grants a freshly registered client access to existing vault items.
    Each item is loaded, granted and saved on its own; a failure leaves the
    items already updated as they are.
    """

    def __init__(self, store: SecretStore, client_name: str):
        self.store = store
        self.client_name = client_name

    def apply(self, spec: VaultUpdateSpec) -> None:
        for vault, items in spec.items():
            if isinstance(items, (list, tuple)):
                for item in items:
                    self.update(vault, item)
            else:
                self.update(vault, items)

    def update(self, vault: str, item: str) -> None:
        log.info("[vault] Granting %s access to %s/%s", self.client_name, vault, item)
        try:
            vault_item = self.store.load_item(vault, item)
        except (ItemNotFound, KeysNotFound) as e:
            raise VaultItemMissing(vault, item) from e
        vault_item.grant_access(self.client_name)
        vault_item.save()
