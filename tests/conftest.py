"""
Global pytest configuration for birdwatcher

This file provides shared fixtures and enforces Python version requirements.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Sequence

import pytest
from fastapi.testclient import TestClient

# Add tests directory to sys.path to support imports from test fixtures
_tests_dir = Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))

from fakes import FakeClient, make_context  # noqa: E402

from birdwatcher.api import create_app  # noqa: E402
from birdwatcher.config import ServerConfig  # noqa: E402

_MIN_PY_VERSION = (3, 11)

REPO_ROOT = _tests_dir.parent
SAMPLE_CONFIG = REPO_ROOT / "etc" / "birdwatcher" / "birdwatcher.conf"


def _verify_python_version() -> str:
    """Return the interpreter version string or exit if <3.11."""
    version_info = sys.version_info
    version_str = ".".join(map(str, version_info[:3]))
    if version_info < _MIN_PY_VERSION:
        pytest.exit(
            f"ERROR: pytest must run on Python 3.11+ (detected {version_str}).",
            returncode=1,
        )
    return version_str


def pytest_report_header(config: pytest.Config) -> str:
    version_str = _verify_python_version()
    return f"Python interpreter verified for pytest: {version_str}"


@pytest.fixture(scope="session", autouse=True)
def register_markers(pytestconfig: pytest.Config) -> None:
    """Register project markers to prevent unknown marker warnings."""
    markers = {
        "unit": "Unit tests that should execute quickly.",
        "integration": "Integration tests hitting multiple components.",
        "slow": "Slow or high-cost tests.",
    }
    for name, description in markers.items():
        pytestconfig.addinivalue_line("markers", f"{name}: {description}")


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def http_client(fake_client: FakeClient) -> Callable[..., TestClient]:
    """Build a TestClient for a whitelist, backed by `fake_client`."""

    def build(modules_enabled: Sequence[str], **server_options) -> TestClient:
        server = ServerConfig(modules_enabled=tuple(modules_enabled), **server_options)
        context = make_context(fake_client, server=server)
        return TestClient(create_app(server, context))

    return build
