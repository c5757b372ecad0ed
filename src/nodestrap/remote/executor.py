# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nodestrap/remote/executor.py

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple

import paramiko
import typer

from nodestrap.config.models import SshSettings, SudoSettings
from nodestrap.errors import AuthenticationFailure, RemoteCommandFailed, TransportError

log = logging.getLogger("nodestrap")

# raised by SSHClient when no key, agent or password could be offered at all
NO_AUTH_METHODS = "No authentication methods available"


class AuthPhase(str, Enum):
    NOT_AUTHENTICATED = "not-authenticated"
    KEY_AUTH_ATTEMPTED = "key-auth-attempted"
    PASSWORD_AUTH_ATTEMPTED = "password-auth-attempted"
    FAILED = "failed"


@dataclass(frozen=True)
class Credentials:
    user: str
    password: Optional[str] = None
    identity_file: Optional[Path] = None
    allow_agent: bool = True


@dataclass(frozen=True)
class ExecResult:
    host: str
    exit_status: int
    phase: AuthPhase


def parse_gateway(gateway: str, default_user: str) -> Tuple[str, str, int]:
    """[user@]host[:port] -> (user, host, port)"""
    user = default_user
    if "@" in gateway:
        user, gateway = gateway.split("@", 1)
    host, port = gateway, 22
    if ":" in gateway:
        host, raw_port = gateway.rsplit(":", 1)
        port = int(raw_port)
    return user, host, port


def _load_pkey(path: Path):
    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key_file(str(path))
        except paramiko.PasswordRequiredException as e:
            raise TransportError(f"Identity file {path} is encrypted, a passphrase is needed") from e
        except paramiko.SSHException:
            continue
        except OSError as e:
            raise TransportError(f"Can not read identity file {path}: {e}") from e
    raise TransportError(f"Unsupported private key format for {path}")


class RemoteExecutor:
    """
    Runs one command on one host.

    Authentication is a two-step state machine: the configured key/agent
    credentials first, then (only after an authentication rejection or when
    no credential could be offered, and only when no password was configured)
    one interactive password attempt.
    Any other failure ends the run immediately.
    """

    def __init__(
        self,
        host: str,
        ssh: SshSettings,
        sudo: Optional[SudoSettings] = None,
        *,
        password_prompt: Optional[Callable[[str], str]] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.host = host
        self.ssh = ssh
        self.sudo = sudo or SudoSettings()
        self.password_prompt = password_prompt or self._prompt_password
        self.client_factory = client_factory

    # ------------------ state machine ------------------

    def _initial_credentials(self) -> Credentials:
        return Credentials(
            user=self.ssh.user,
            password=self.ssh.password,
            identity_file=self.ssh.identity_file,
        )

    def _on_auth_failure(self, phase: AuthPhase) -> AuthPhase:
        if phase is AuthPhase.KEY_AUTH_ATTEMPTED and self.ssh.password is None:
            return AuthPhase.PASSWORD_AUTH_ATTEMPTED
        return AuthPhase.FAILED

    def run(self, command: str) -> ExecResult:
        phase = AuthPhase.NOT_AUTHENTICATED
        creds = self._initial_credentials()
        last_error: Optional[Exception] = None

        while phase is not AuthPhase.FAILED:
            if phase is AuthPhase.NOT_AUTHENTICATED:
                phase = AuthPhase.KEY_AUTH_ATTEMPTED
            try:
                status = self._execute(creds, command)
            except paramiko.AuthenticationException as e:
                last_error = e
                phase = self._on_auth_failure(phase)
                if phase is AuthPhase.PASSWORD_AUTH_ATTEMPTED:
                    log.info("Failed to authenticate %s - trying password auth", creds.user)
                    creds = replace(
                        creds,
                        identity_file=None,
                        allow_agent=False,
                        password=self.password_prompt(creds.user),
                    )
                continue

            result = ExecResult(host=self.host, exit_status=status, phase=phase)
            if status != 0:
                raise RemoteCommandFailed(self.host, status)
            return result

        raise AuthenticationFailure(
            f"Authentication failed for {creds.user}@{self.host}: {last_error}"
        ) from last_error

    # ------------------ command ------------------

    def wrap_command(self, command: str, password: Optional[str]) -> str:
        if not self.sudo.use_sudo:
            return command
        if self.sudo.use_sudo_password:
            return f"echo {shlex.quote(password or '')} | sudo -S {command}"
        return f"sudo {command}"

    # ------------------ connection & utils ------------------

    def _prompt_password(self, user: str) -> str:
        return typer.prompt(f"{user}@{self.host}'s password", hide_input=True)

    def _apply_host_key_policy(self, client: paramiko.SSHClient) -> None:
        if self.ssh.host_key_verify:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    def _open_gateway_channel(self, creds: Credentials):
        gw_user, gw_host, gw_port = parse_gateway(self.ssh.gateway, creds.user)
        gateway = self.client_factory()
        self._apply_host_key_policy(gateway)
        try:
            gateway.connect(
                hostname=gw_host,
                port=gw_port,
                username=gw_user,
                pkey=_load_pkey(creds.identity_file) if creds.identity_file else None,
                allow_agent=True,
                timeout=self.ssh.connect_timeout,
            )
            channel = gateway.get_transport().open_channel(
                "direct-tcpip", (self.host, self.ssh.port), ("127.0.0.1", 0)
            )
        except (paramiko.SSHException, OSError) as e:
            gateway.close()
            raise TransportError(f"Failed to reach {self.host} through gateway {gw_host}: {e}") from e
        return gateway, channel

    def _connect(self, creds: Credentials):
        pkey = _load_pkey(creds.identity_file) if creds.identity_file else None
        gateway, sock = None, None
        if self.ssh.gateway:
            gateway, sock = self._open_gateway_channel(creds)

        client = self.client_factory()
        self._apply_host_key_policy(client)
        try:
            client.connect(
                hostname=self.host,
                port=self.ssh.port,
                username=creds.user,
                password=creds.password,
                pkey=pkey,
                allow_agent=creds.allow_agent,
                look_for_keys=creds.allow_agent and pkey is None,
                sock=sock,
                timeout=self.ssh.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            if gateway:
                gateway.close()
            if isinstance(e, paramiko.AuthenticationException):
                raise
            if NO_AUTH_METHODS in str(e):
                raise paramiko.AuthenticationException(str(e)) from e
            raise TransportError(f"Failed to connect to {self.host}:{self.ssh.port}: {e}") from e
        return client, gateway

    def _execute(self, creds: Credentials, command: str) -> int:
        client, gateway = self._connect(creds)
        try:
            channel = client.get_transport().open_session()
            if self.ssh.forward_agent:
                paramiko.agent.AgentRequestHandler(channel)
            if self.sudo.use_sudo:
                channel.get_pty()
            channel.set_combine_stderr(True)
            channel.exec_command(self.wrap_command(command, creds.password))

            for raw in channel.makefile("r"):
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                log.info("%s %s", self.host, line.rstrip("\r\n"))
            return channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Command execution on {self.host} failed: {e}") from e
        finally:
            client.close()
            if gateway:
                gateway.close()
