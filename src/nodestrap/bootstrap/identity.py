# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/bootstrap/identity.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

from nodestrap.config.models import BootstrapRequest
from nodestrap.errors import DirectoryServerError, IdentityConflict
from nodestrap.server.client import DirectoryClient

log = logging.getLogger("nodestrap")


class ReconciliationAction(str, Enum):
    ABORT = "abort"
    OVERWRITE = "overwrite"
    ADOPT = "adopt"
    CLEAN_RECREATE = "clean-recreate"
    CREATE_NEW = "create-new"


# (node_exists, client_exists, overwrite) -> action
_DECISIONS: Dict[Tuple[bool, bool, bool], ReconciliationAction] = {
    (True, True, False): ReconciliationAction.ABORT,
    (True, True, True): ReconciliationAction.OVERWRITE,
    (True, False, False): ReconciliationAction.ADOPT,
    (True, False, True): ReconciliationAction.ADOPT,
    (False, True, False): ReconciliationAction.CLEAN_RECREATE,
    (False, True, True): ReconciliationAction.CLEAN_RECREATE,
    (False, False, False): ReconciliationAction.CREATE_NEW,
    (False, False, True): ReconciliationAction.CREATE_NEW,
}

_RATIONALE: Dict[ReconciliationAction, str] = {
    ReconciliationAction.ABORT: "Node and client already exist and overwrite_node is false",
    ReconciliationAction.OVERWRITE: "Will overwrite existing node and client because overwrite_node is true",
    ReconciliationAction.ADOPT: "Node exists, but client does not, assuming pre-created node data",
    ReconciliationAction.CLEAN_RECREATE: "Node does not exist, but client does, will delete and recreate old client",
    ReconciliationAction.CREATE_NEW: "Will create new node and client",
}


@dataclass(frozen=True)
class IdentityState:
    node_exists: bool
    client_exists: bool

    def decide(self, overwrite: bool) -> ReconciliationAction:
        return _DECISIONS[(self.node_exists, self.client_exists, bool(overwrite))]


@dataclass(frozen=True)
class CredentialArtifact:
    """Private key of the freshly registered client, valid for one run."""
    client_name: str
    path: Path

    def read(self) -> str:
        return self.path.read_text()


class IdentityReconciler:
    """
    Looks up the node and client records for a name (node first) and picks
    what the registrant should do about them.
    """

    def __init__(self, client: DirectoryClient):
        self.client = client

    def query(self, name: str) -> IdentityState:
        node_exists = self.client.exists(f"nodes/{name}")
        client_exists = self.client.exists(f"clients/{name}")
        log.debug("[identity] %s: node_exists=%s client_exists=%s", name, node_exists, client_exists)
        return IdentityState(node_exists=node_exists, client_exists=client_exists)

    def reconcile(self, name: str, *, overwrite: bool) -> Tuple[IdentityState, ReconciliationAction]:
        state = self.query(name)
        action = state.decide(overwrite)
        if action is ReconciliationAction.ABORT:
            raise IdentityConflict(f"{name}: {_RATIONALE[action]}")
        log.info("[identity] %s", _RATIONALE[action])
        return state, action


def build_node(request: BootstrapRequest) -> Dict[str, Any]:
    """Node record body as the server expects it."""
    return {
        "name": request.effective_node_name,
        "chef_type": "node",
        "json_class": "Chef::Node",
        "chef_environment": request.environment or "_default",
        "run_list": list(request.run_list),
        "normal": dict(request.first_boot_attributes),
        "default": {},
        "override": {},
        "automatic": {},
    }


class Registrant:
    """
    Carries out a reconciliation action: (re)creates the client, writes its
    key into ``workdir`` and creates the node *as that client*.
    """

    def __init__(self, client: DirectoryClient, request: BootstrapRequest, workdir: Path):
        self.client = client
        self.request = request
        self.workdir = Path(workdir)
        self.node_name = request.effective_node_name

        self._handlers: Dict[ReconciliationAction, Callable[[], CredentialArtifact]] = {
            ReconciliationAction.CREATE_NEW: self._create_new,
            ReconciliationAction.CLEAN_RECREATE: self._clean_recreate,
            ReconciliationAction.ADOPT: self._adopt,
            ReconciliationAction.OVERWRITE: self._overwrite,
        }

    def register(self, action: ReconciliationAction) -> CredentialArtifact:
        try:
            handler = self._handlers[action]
        except KeyError:
            raise IdentityConflict(f"{self.node_name}: refusing to register ({action.value})") from None
        return handler()

    # ------------------ actions ------------------

    def _create_new(self) -> CredentialArtifact:
        artifact = self._register_client()
        self._create_node(artifact)
        return artifact

    def _clean_recreate(self) -> CredentialArtifact:
        self._delete(f"clients/{self.node_name}")
        return self._create_new()

    def _adopt(self) -> CredentialArtifact:
        return self._register_client()

    def _overwrite(self) -> CredentialArtifact:
        self._delete(f"nodes/{self.node_name}")
        self._delete(f"clients/{self.node_name}")
        return self._create_new()

    # ------------------ steps ------------------

    def _delete(self, path: str) -> None:
        log.info("[identity] Deleting %s", path)
        self.client.delete(path)

    def _register_client(self) -> CredentialArtifact:
        log.info("[identity] Creating client for %s on server", self.node_name)
        try:
            resp = self.client.post(
                "clients",
                {"name": self.node_name, "admin": False, "create_key": True},
            )
        except DirectoryServerError as e:
            if e.status != 409:
                raise
            log.info("[identity] Client %s already exists, regenerating its key", self.node_name)
            resp = self.client.put(
                f"clients/{self.node_name}",
                {"name": self.node_name, "admin": False, "private_key": True},
            )

        private_key = resp.get("private_key") or (resp.get("chef_key") or {}).get("private_key")
        if not private_key:
            raise DirectoryServerError(f"Server returned no private key for client {self.node_name}")

        path = self.workdir / f"{self.node_name}.pem"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(private_key)
        return CredentialArtifact(client_name=self.node_name, path=path)

    def _create_node(self, artifact: CredentialArtifact) -> None:
        log.info("[identity] Creating node %s", self.node_name)
        as_node = self.client.as_client(artifact.client_name, artifact.path)
        as_node.post("nodes", build_node(self.request))
