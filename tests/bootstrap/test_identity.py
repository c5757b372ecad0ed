from pathlib import Path

import pytest

from fakes import FakeDirectoryClient

from nodestrap.bootstrap.identity import (
    IdentityReconciler,
    IdentityState,
    ReconciliationAction,
    Registrant,
    build_node,
)
from nodestrap.config.models import BootstrapRequest
from nodestrap.errors import DirectoryServerError, IdentityConflict

A = ReconciliationAction


# ----------------- decision table -----------------

@pytest.mark.parametrize(
    "node, client, overwrite, expected",
    [
        (True, True, False, A.ABORT),
        (True, True, True, A.OVERWRITE),
        (True, False, False, A.ADOPT),
        (True, False, True, A.ADOPT),
        (False, True, False, A.CLEAN_RECREATE),
        (False, True, True, A.CLEAN_RECREATE),
        (False, False, False, A.CREATE_NEW),
        (False, False, True, A.CREATE_NEW),
    ],
)
def test_decision_table(node, client, overwrite, expected):
    assert IdentityState(node, client).decide(overwrite) is expected


def test_only_full_pair_without_overwrite_aborts():
    aborting = [
        (n, c)
        for n in (True, False)
        for c in (True, False)
        if IdentityState(n, c).decide(False) is A.ABORT
    ]
    assert aborting == [(True, True)]


# ----------------- reconciler -----------------

def test_reconciler_checks_node_before_client():
    client = FakeDirectoryClient()
    IdentityReconciler(client).query("web1")
    assert client.methods() == [("GET", "nodes/web1"), ("GET", "clients/web1")]


def test_reconciler_aborts_on_existing_pair():
    client = FakeDirectoryClient({"nodes/web1": {}, "clients/web1": {}})
    with pytest.raises(IdentityConflict, match="web1"):
        IdentityReconciler(client).reconcile("web1", overwrite=False)


def test_reconciler_overwrite_proceeds():
    client = FakeDirectoryClient({"nodes/web1": {}, "clients/web1": {}})
    state, action = IdentityReconciler(client).reconcile("web1", overwrite=True)
    assert state == IdentityState(True, True)
    assert action is A.OVERWRITE


def test_reconciler_propagates_server_errors():
    client = FakeDirectoryClient(
        failures={("GET", "nodes/web1"): DirectoryServerError("boom", status=500)}
    )
    with pytest.raises(DirectoryServerError):
        IdentityReconciler(client).reconcile("web1", overwrite=False)


# ----------------- registrant -----------------

def _request(**kw):
    base = dict(
        target="web1.example.com",
        node_name="web1",
        run_list="recipe[base], role[web]",
        first_boot_attributes={"tier": "front"},
    )
    base.update(kw)
    return BootstrapRequest(**base)


def test_build_node_uses_first_boot_attributes_as_normal():
    node = build_node(_request(environment="prod"))
    assert node["name"] == "web1"
    assert node["run_list"] == ["recipe[base]", "role[web]"]
    assert node["normal"] == {"tier": "front"}
    assert node["chef_environment"] == "prod"


def test_create_new_registers_client_then_node_as_new_client(tmp_path: Path):
    client = FakeDirectoryClient()
    artifact = Registrant(client, _request(), tmp_path).register(A.CREATE_NEW)

    assert artifact.path == tmp_path / "web1.pem"
    assert "FAKE" in artifact.read()
    assert oct(artifact.path.stat().st_mode & 0o777) == "0o600"

    assert client.methods("alice") == [("POST", "clients")]
    # node is created with the freshly issued identity, not the user's
    assert client.methods("web1") == [("POST", "nodes")]
    assert client.resources["nodes/web1"]["run_list"] == ["recipe[base]", "role[web]"]


def test_clean_recreate_deletes_stale_client_first(tmp_path: Path):
    client = FakeDirectoryClient({"clients/web1": {"name": "web1"}})
    Registrant(client, _request(), tmp_path).register(A.CLEAN_RECREATE)
    assert client.methods() == [
        ("DELETE", "clients/web1"),
        ("POST", "clients"),
        ("POST", "nodes"),
    ]


def test_adopt_creates_client_only(tmp_path: Path):
    client = FakeDirectoryClient({"nodes/web1": {"name": "web1", "run_list": ["role[db]"]}})
    Registrant(client, _request(), tmp_path).register(A.ADOPT)
    assert client.methods() == [("POST", "clients")]
    assert client.resources["nodes/web1"]["run_list"] == ["role[db]"]


def test_overwrite_replaces_node_and_client(tmp_path: Path):
    client = FakeDirectoryClient({"nodes/web1": {"name": "web1"}, "clients/web1": {"name": "web1"}})
    Registrant(client, _request(), tmp_path).register(A.OVERWRITE)
    assert client.methods() == [
        ("DELETE", "nodes/web1"),
        ("DELETE", "clients/web1"),
        ("POST", "clients"),
        ("POST", "nodes"),
    ]


def test_conflicting_client_falls_back_to_key_regeneration(tmp_path: Path):
    # client appeared between the existence check and registration
    client = FakeDirectoryClient({"clients/web1": {"name": "web1"}, "nodes/web1": {}})
    artifact = Registrant(client, _request(), tmp_path).register(A.ADOPT)
    assert client.methods() == [("POST", "clients"), ("PUT", "clients/web1")]
    assert "FAKE" in artifact.read()


def test_abort_is_never_registered(tmp_path: Path):
    with pytest.raises(IdentityConflict):
        Registrant(FakeDirectoryClient(), _request(), tmp_path).register(A.ABORT)


def test_registration_errors_are_not_retried(tmp_path: Path):
    client = FakeDirectoryClient(
        failures={("POST", "clients"): DirectoryServerError("denied", status=403)}
    )
    with pytest.raises(DirectoryServerError):
        Registrant(client, _request(), tmp_path).register(A.CREATE_NEW)
    assert client.methods() == [("POST", "clients")]
