# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/errors.py

from __future__ import annotations

from typing import Optional


class NodestrapError(RuntimeError):
    """Base class for bootstrap failures."""


class ValidationError(NodestrapError):
    """Raised before any network activity when the request is unusable."""


class IdentityConflict(NodestrapError):
    """Node and client both exist and overwriting was not requested."""


class DirectoryServerError(NodestrapError):
    """Any directory/API server failure other than a plain not-found."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResourceNotFound(DirectoryServerError):
    pass


class TemplateNotFound(NodestrapError):
    def __init__(self, template: str):
        super().__init__(f"Can not find bootstrap definition for {template}")
        self.template = template


class VaultError(NodestrapError):
    """Base class for secret store failures."""


class ItemNotFound(VaultError):
    pass


class KeysNotFound(VaultError):
    pass


class VaultItemMissing(VaultError):
    def __init__(self, vault: str, item: str):
        super().__init__(
            f"{vault}/{item} does not exist, "
            "you might want to delete the node before retrying."
        )
        self.vault = vault
        self.item = item


class AuthenticationFailure(NodestrapError):
    """Remote host rejected our SSH credentials."""


class TransportError(NodestrapError):
    """Remote connection or execution failure unrelated to authentication."""


class RemoteCommandFailed(TransportError):
    def __init__(self, host: str, exit_status: int):
        super().__init__(f"Bootstrap command on {host} exited with status {exit_status}")
        self.host = host
        self.exit_status = exit_status
