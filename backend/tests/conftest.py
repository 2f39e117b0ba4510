"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

import relay.config as config_module
from relay.chat.manager import manager
from relay.config import RelayConfig
from relay.main import app


@pytest.fixture(autouse=True)
def relay_config(monkeypatch):
    """Install a default RelayConfig as the process-wide config.

    Tests can tweak the returned object (e.g. ``relay_config.chat.max_connections``)
    and the WebSocket endpoint will see the change on its next connection.
    """
    config = RelayConfig()
    monkeypatch.setattr(config_module, "_config", config)
    return config


@pytest.fixture(autouse=True)
def reset_manager():
    """Clear the shared roster and connections after each test."""
    yield
    manager.reset()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)
