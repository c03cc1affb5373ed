"""
Test fixtures for the insights pipeline.

This module provides reusable test data and mock objects for testing.
"""

from .factories import *
from .mocks import *

__all__ = [
    # Factories
    "InsightRecordFactory",
    "CollectionFactory",
    "ClientFactory",
    # Mocks
    "MockGraphResponse",
    "MockGraphSession",
    "StaticInsightsClient",
    "ManualClock",
]
