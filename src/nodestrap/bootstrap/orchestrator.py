# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/bootstrap/orchestrator.py

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Callable, Optional

from nodestrap.config.models import BootstrapRequest, ServerConfig
from nodestrap.errors import NodestrapError, ValidationError
from nodestrap.observers.dispatcher import EventBus
from nodestrap.observers.events import LifecycleEvent
from nodestrap.remote.executor import ExecResult, RemoteExecutor
from nodestrap.server.client import DirectoryClient
from nodestrap.utils.retry import retry
from nodestrap.vault.distributor import SecretDistributor
from nodestrap.vault.store import DataBagVaultStore, SecretStore

from .context import RenderContext
from .identity import CredentialArtifact, IdentityReconciler, Registrant
from .templates import TemplateRenderer, TemplateResolver

log = logging.getLogger("nodestrap")


class NodeNotVisible(NodestrapError):
    pass


class BootstrapOrchestrator:
    """
    One bootstrap run:

      1. validate the target
      2. reconcile + register identity (skipped when the node should use the
         validator and no vault updates were asked for); with vault updates,
         wait for search to see the node and grant the new client access
      3. resolve and render the bootstrap template
      4. run the rendered command on the target over SSH
    """

    def __init__(
        self,
        request: BootstrapRequest,
        config: ServerConfig,
        *,
        client: Optional[DirectoryClient] = None,
        store_factory: Optional[Callable[[DirectoryClient], SecretStore]] = None,
        resolver: Optional[TemplateResolver] = None,
        renderer: Optional[TemplateRenderer] = None,
        executor_factory: Optional[Callable[[str], RemoteExecutor]] = None,
        bus: Optional[EventBus] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.request = request
        self.config = config
        self._client = client
        self.store_factory = store_factory or self._default_store
        self.resolver = resolver or TemplateResolver(config)
        self.renderer = renderer or TemplateRenderer()
        self.executor_factory = executor_factory or self._default_executor
        self.bus = bus or EventBus()
        self._sleep = sleep

    # ------------------ collaborators ------------------

    @property
    def client(self) -> DirectoryClient:
        if self._client is None:
            self._client = DirectoryClient.from_config(self.config)
        return self._client

    def _default_store(self, client: DirectoryClient) -> SecretStore:
        if not (self.config.client_name and self.config.client_key):
            raise ValidationError("Vault updates need client_name and client_key in the config")
        return DataBagVaultStore(client, self.config.client_name, self.config.client_key)

    def _default_executor(self, host: str) -> RemoteExecutor:
        return RemoteExecutor(host, self.request.ssh, self.request.sudo)

    def _emit(self, phase: str, status: str, message: str) -> None:
        self.bus.emit(LifecycleEvent(phase, status, message))

    # ------------------ steps ------------------

    def validate(self) -> str:
        target = self.request.target
        if not target:
            raise ValidationError("Must pass an FQDN or ip to bootstrap")
        if "windows" in target.lower():
            log.warning(
                "Hostname containing 'windows' specified. Windows nodes need a WinRM "
                "bootstrap, not SSH."
            )
        return target

    def register(self, workdir: Path) -> CredentialArtifact:
        name = self.request.effective_node_name
        log.info("[%s] Registering Node %s", self.request.target, name)
        _, action = IdentityReconciler(self.client).reconcile(
            name, overwrite=self.request.overwrite_node
        )
        return Registrant(self.client, self.request, workdir).register(action)

    def wait_for_node(self) -> None:
        name = self.request.effective_node_name

        def _search():
            result = self.client.search("node", f"name:{name}")
            if not result.get("total") and not result.get("rows"):
                raise NodeNotVisible(f"node {name} not yet visible in search")

        def _on_retry(attempt, exc):
            log.info("[%s] Waiting search node.. (%d/%d)", self.request.target, attempt,
                     self.config.node_wait_attempts)

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        retry(
            retries=self.config.node_wait_attempts,
            delay=self.config.node_wait_delay,
            retry_on=(NodeNotVisible,),
            on_retry=_on_retry,
            **kwargs,
        )(_search)()

    def distribute_secrets(self) -> None:
        log.info("[%s] Updating vault(s)", self.request.target)
        distributor = SecretDistributor(
            self.store_factory(self.client), self.request.effective_node_name
        )
        for spec in (self.request.vault_list, self.request.vault_file):
            if spec:
                distributor.apply(spec)

    def render(self, credential: Optional[CredentialArtifact] = None) -> str:
        template_path = self.resolver.resolve(self.request.template)
        context = RenderContext.build(
            self.request,
            self.config,
            secret=self.request.secret,
            client_pem=credential.read() if credential else None,
        )
        return self.renderer.render(template_path, context)

    def execute(self, target: str, command: str) -> ExecResult:
        log.info("Connecting to %s", target)
        return self.executor_factory(target).run(command)

    # ------------------ public API ------------------

    def run(self) -> ExecResult:
        phase = "validate"
        try:
            target = self.validate()

            # the registered client's key lives only as long as this block
            with tempfile.TemporaryDirectory(prefix="nodestrap-") as workdir:
                credential = None
                if self.request.wants_registration:
                    phase = "register"
                    self._emit(phase, "START", f"Starting pre-bootstrap for {target}")
                    credential = self.register(Path(workdir))
                if self.request.wants_vault:
                    self.wait_for_node()
                    phase = "vault"
                    self.distribute_secrets()

                phase = "render"
                command = self.render(credential)

            phase = "execute"
            self._emit(phase, "START", f"Running bootstrap on {target}")
            result = self.execute(target, command)
            self._emit("run", "SUCCESS", f"Bootstrap of {target} completed")
            return result
        except Exception as exc:
            self._emit(phase, "FAILURE", str(exc))
            raise
