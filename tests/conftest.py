import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import FakeDirectoryClient  # noqa: E402

from nodestrap.config.models import ServerConfig  # noqa: E402


@pytest.fixture
def fake_client():
    return FakeDirectoryClient()


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(
        server_url="https://config.example.test/organizations/acme",
        client_name="alice",
        config_dir=tmp_path / "etc",
        node_wait_attempts=3,
        node_wait_delay=0,
    )
