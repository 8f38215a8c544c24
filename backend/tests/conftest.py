"""
Shared pytest fixtures for shipwatch tests.

Fixtures provided:
- make_container: factory for Container objects from minimal inspect data
- fake_client: in-memory FakeRuntimeClient recording every call
- update_params: default UpdateParams for a cycle
- mock_docker_client: Mock Docker SDK client
"""

import pytest
from unittest.mock import MagicMock

from tests.test_helpers import FakeRuntimeClient, create_container
from updates.types import CancelToken, UpdateParams
from updates.update_executor import UpdateExecutor


@pytest.fixture
def make_container():
    """Factory fixture, see tests.test_helpers.create_container"""
    return create_container


@pytest.fixture
def fake_client():
    return FakeRuntimeClient()


@pytest.fixture
def update_params():
    return UpdateParams(pull_failure_delay=0)


@pytest.fixture
def cancel_token():
    return CancelToken()


@pytest.fixture(autouse=True)
def no_stop_retry_delay(monkeypatch):
    """Stop retries happen without waiting in tests"""
    monkeypatch.setattr(UpdateExecutor, "STOP_RETRY_DELAY", 0)


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Returns a MagicMock with the low-level API stubbed.
    """
    client = MagicMock()
    client.api.api_version = "1.44"
    client.api.containers = MagicMock(return_value=[])
    client.info = MagicMock(return_value={"Name": "docker-host"})
    client.version = MagicMock(return_value={"Platform": {"Name": "Docker Engine - Community"}})
    return client
