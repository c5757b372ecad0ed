# tests/remote/test_executor.py
from __future__ import annotations

import paramiko
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from nodestrap.config.models import SshSettings, SudoSettings
from nodestrap.errors import AuthenticationFailure, RemoteCommandFailed, TransportError
from nodestrap.remote.executor import AuthPhase, RemoteExecutor, parse_gateway

# ----------------- Fakes for Paramiko -----------------

class FakeChannel:
    def __init__(self, log, output="", rc=0):
        self.log = log
        self._output = output
        self._rc = rc
    def get_pty(self): self.log.append(("pty",))
    def set_combine_stderr(self, flag): pass
    def request_forward_agent(self, handler): self.log.append(("forward_agent",))
    def exec_command(self, cmd): self.log.append(("exec", cmd))
    def makefile(self, mode): return iter(self._output.splitlines(keepends=True))
    def recv_exit_status(self): return self._rc


class FakeTransport:
    def __init__(self, log, channel):
        self.log = log
        self._channel = channel
    def open_session(self): return self._channel
    def open_channel(self, kind, dest, src):
        self.log.append(("open_channel", kind, dest))
        return "SOCK"


class FakeSSHClient:
    """
    Each connect() consumes the next scripted outcome: "ok", "auth" or an
    exception instance.
    """
    def __init__(self, log, outcomes, output="", rc=0):
        self.log = log
        self._outcomes = outcomes
        self._channel = FakeChannel(log, output, rc)
    def load_system_host_keys(self): pass
    def set_missing_host_key_policy(self, policy):
        self.log.append(("policy", type(policy).__name__))
    def connect(self, **kw):
        self.log.append(("connect", kw))
        outcome = self._outcomes.pop(0)
        if outcome == "auth":
            raise paramiko.AuthenticationException("Authentication failed.")
        if isinstance(outcome, Exception):
            raise outcome
    def get_transport(self): return FakeTransport(self.log, self._channel)
    def close(self): self.log.append(("close",))


def _executor(log, outcomes, *, ssh=None, sudo=None, prompts=None, output="", rc=0):
    prompts = prompts if prompts is not None else []

    def prompt(user):
        prompts.append(user)
        return "typed-pw"

    return RemoteExecutor(
        "web1.example.com",
        ssh or SshSettings(user="ubuntu"),
        sudo,
        password_prompt=prompt,
        client_factory=lambda: FakeSSHClient(log, outcomes, output, rc),
    )


def _connects(log):
    return [e[1] for e in log if e[0] == "connect"]


# ----------------- Tests -----------------

def test_runs_once_when_key_auth_succeeds():
    log, prompts = [], []
    ex = _executor(log, ["ok"], prompts=prompts, output="installing\ndone\n")
    result = ex.run("echo hi")

    assert result.exit_status == 0
    assert result.phase is AuthPhase.KEY_AUTH_ATTEMPTED
    assert len(_connects(log)) == 1
    assert ("exec", "echo hi") in log
    assert prompts == []


def test_falls_back_to_password_once_on_auth_failure():
    log, prompts = [], []
    ex = _executor(log, ["auth", "ok"], prompts=prompts)
    result = ex.run("echo hi")

    assert result.phase is AuthPhase.PASSWORD_AUTH_ATTEMPTED
    assert prompts == ["ubuntu"]
    first, second = _connects(log)
    assert first["password"] is None
    assert second["password"] == "typed-pw"
    assert second["pkey"] is None and second["allow_agent"] is False


def test_second_auth_failure_is_terminal():
    log, prompts = [], []
    ex = _executor(log, ["auth", "auth"], prompts=prompts)
    with pytest.raises(AuthenticationFailure):
        ex.run("echo hi")
    assert len(_connects(log)) == 2
    assert prompts == ["ubuntu"]


def test_explicit_password_disables_fallback():
    log, prompts = [], []
    ex = _executor(log, ["auth", "ok"], ssh=SshSettings(user="ubuntu", password="pw"), prompts=prompts)
    with pytest.raises(AuthenticationFailure) as excinfo:
        ex.run("echo hi")
    assert isinstance(excinfo.value.__cause__, paramiko.AuthenticationException)
    assert len(_connects(log)) == 1
    assert prompts == []


def test_transport_errors_do_not_fall_back():
    log, prompts = [], []
    ex = _executor(log, [OSError("connection refused"), "ok"], prompts=prompts)
    with pytest.raises(TransportError):
        ex.run("echo hi")
    assert len(_connects(log)) == 1
    assert prompts == []


def test_non_zero_exit_raises_with_status():
    ex = _executor([], ["ok"], rc=3)
    with pytest.raises(RemoteCommandFailed) as excinfo:
        ex.run("false")
    assert excinfo.value.exit_status == 3


def test_sudo_wrappers():
    plain = _executor([], [], sudo=SudoSettings(use_sudo=True))
    assert plain.wrap_command("bash -c 'x'", None) == "sudo bash -c 'x'"

    with_pw = _executor([], [], sudo=SudoSettings(use_sudo=True, use_sudo_password=True))
    assert with_pw.wrap_command("id", "p'w") == "echo 'p'\"'\"'w' | sudo -S id"

    none = _executor([], [])
    assert none.wrap_command("id", "pw") == "id"


def test_sudo_password_uses_prompted_password_after_fallback():
    log = []
    ex = _executor(log, ["auth", "ok"], sudo=SudoSettings(use_sudo=True, use_sudo_password=True))
    ex.run("id")
    assert ("exec", "echo typed-pw | sudo -S id") in log
    assert ("pty",) in log


def test_host_key_policy_follows_settings():
    log = []
    _executor(log, ["ok"]).run("true")
    assert ("policy", "RejectPolicy") in log

    log = []
    _executor(log, ["ok"], ssh=SshSettings(host_key_verify=False)).run("true")
    assert ("policy", "AutoAddPolicy") in log


def test_gateway_tunnels_through_direct_tcpip():
    log = []
    ssh = SshSettings(user="ubuntu", gateway="jump@bastion:2222", port=2200)
    _executor(log, ["ok", "ok"], ssh=ssh).run("true")

    gateway_connect, target_connect = _connects(log)
    assert gateway_connect["hostname"] == "bastion"
    assert gateway_connect["port"] == 2222
    assert gateway_connect["username"] == "jump"
    assert ("open_channel", "direct-tcpip", ("web1.example.com", 2200)) in log
    assert target_connect["sock"] == "SOCK"


def test_parse_gateway_defaults():
    assert parse_gateway("bastion", "root") == ("root", "bastion", 22)
    assert parse_gateway("ops@bastion:2022", "root") == ("ops", "bastion", 2022)


def test_unreadable_identity_file_is_a_transport_error(tmp_path):
    log = []
    ssh = SshSettings(user="ubuntu", identity_file=tmp_path / "missing_key")
    with pytest.raises(TransportError):
        _executor(log, ["ok"], ssh=ssh).run("true")
    assert _connects(log) == []


def test_no_offerable_credentials_falls_back_to_password():
    log, prompts = [], []
    outcomes = [paramiko.SSHException("No authentication methods available"), "ok"]
    result = _executor(log, outcomes, prompts=prompts).run("echo hi")

    assert result.phase is AuthPhase.PASSWORD_AUTH_ATTEMPTED
    assert prompts == ["ubuntu"]
    assert _connects(log)[1]["password"] == "typed-pw"


def test_other_ssh_errors_do_not_fall_back():
    log, prompts = [], []
    outcomes = [paramiko.SSHException("Error reading SSH protocol banner"), "ok"]
    with pytest.raises(TransportError):
        _executor(log, outcomes, prompts=prompts).run("echo hi")
    assert prompts == []


def test_forward_agent_requests_agent_forwarding():
    log = []
    _executor(log, ["ok"], ssh=SshSettings(user="ubuntu", forward_agent=True)).run("true")
    assert ("forward_agent",) in log

    log = []
    _executor(log, ["ok"]).run("true")
    assert ("forward_agent",) not in log


def test_encrypted_identity_file_asks_for_passphrase(tmp_path):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    path = tmp_path / "id_rsa"
    path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.BestAvailableEncryption(b"hunter2"),
    ))

    log, prompts = [], []
    ssh = SshSettings(user="ubuntu", identity_file=path)
    with pytest.raises(TransportError, match="passphrase"):
        _executor(log, ["ok"], ssh=ssh, prompts=prompts).run("true")
    assert _connects(log) == []
    assert prompts == []
