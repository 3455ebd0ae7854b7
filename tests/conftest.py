"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gcp_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from gcp_mock import FakeCloudProvider  # noqa: E402

from provisioner.config import Configuration  # noqa: E402

PROJECT_NUMBER = "123456789012"


@pytest.fixture
def config() -> Configuration:
    """Configuration for project "demo" with the project number already known."""
    return Configuration(project_id="demo", project_number=PROJECT_NUMBER)


@pytest.fixture
def unresolved_config() -> Configuration:
    """Configuration for project "demo" before the project number lookup."""
    return Configuration(project_id="demo")


@pytest.fixture
def provider() -> FakeCloudProvider:
    return FakeCloudProvider(project_number=PROJECT_NUMBER)


@pytest.fixture(autouse=True)
def _reset_provisioner_logging() -> Generator[None, None, None]:
    """Drop handlers installed by setup_logging so they don't outlive a test."""
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_provisioner_handler", False):
            root.removeHandler(handler)
