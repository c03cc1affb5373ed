"""
Global pytest configuration and fixtures for all tests.

This file provides fixtures available to all test modules.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import database fixtures for all tests
from tests.conftest_db import *  # noqa: F401,F403
from tests.fixtures import ClientFactory, CollectionFactory, InsightRecordFactory

# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True, scope="function")
def test_environment(monkeypatch):
    """Configure test environment variables without global pollution."""
    from src.core.config import reset_config
    from src.core.database.database_session import reset_engine

    monkeypatch.setenv("INSIGHTS_TESTING", "1")
    monkeypatch.setenv("FB_ACCESS_TOKEN", os.environ.get("FB_ACCESS_TOKEN", "test_access_token"))
    monkeypatch.delenv("PRODUCTION", raising=False)
    reset_config()

    yield

    reset_config()
    reset_engine()


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def record_factory():
    return InsightRecordFactory


@pytest.fixture
def collection_factory():
    return CollectionFactory


@pytest.fixture
def client_factory():
    return ClientFactory


@pytest.fixture
def sample_collection():
    """A complete, valid collection for act_123456 covering 2024-03."""
    return CollectionFactory.create()
