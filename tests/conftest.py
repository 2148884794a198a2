"""Test fixtures and configuration for forge_express."""

import sys
from pathlib import Path

import pytest

# Add the repository root directory to the Python path
# This makes 'forge_express' an importable package
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from forge_express.app import App
from forge_express.config import Config
from forge_express.engine import IncomingRequest, OutgoingResponse
from forge_express.testing import AsgiClient


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep FORGE_EXPRESS_* variables from the outer environment out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("FORGE_EXPRESS_"):
            monkeypatch.delenv(key)


@pytest.fixture
def app():
    """Create a test application instance."""
    return App()


@pytest.fixture
def config():
    """Create a test configuration instance."""
    return Config()


@pytest.fixture
def client(app):
    """Create an in-process client for the test application."""
    return AsgiClient(app)


@pytest.fixture
def raw_factory():
    """Create a factory for raw request/response pairs."""
    def _create(
        method="GET",
        url="/",
        headers=None,
        body=None,
        app=None,
        scheme="http",
    ):
        request = IncomingRequest(method, url, headers, body=body, app=app, scheme=scheme)
        return request, OutgoingResponse(request)
    return _create
