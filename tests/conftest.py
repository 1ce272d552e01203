"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Database fixtures (in-memory and file-based SQLite)
- A controllable clock for cache expiry
- A fake carrier rate provider
- Common upload rows and column mappings
"""

import asyncio
import os
import tempfile
from collections.abc import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from shiprates.db.connection import create_session_factory, init_db
from shiprates.errors import RateProviderError
from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.rate_cache import RateRequest

# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    """In-memory SQLite with all tables created."""
    factory = create_session_factory("sqlite:///:memory:")
    init_db(factory)
    return factory


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database URL.

    Unlike in-memory databases, this persists across connections, so
    threads each get their own connection.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield f"sqlite:///{path}"

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> AnalysisStore:
    return AnalysisStore(session_factory)


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Rate Provider
# ============================================================================


class FakeRateProvider:
    """Carrier client returning two quotes priced off the shipment weight.

    Ground costs ``5 + weight`` and next-day air twice that. Destination
    ZIPs listed in ``failing`` raise ``error`` instead.
    """

    def __init__(self) -> None:
        self.calls = 0
        self.failing: set[str] = set()
        self.error: Exception = RateProviderError("carrier timeout")

    async def get_rates(self, request: RateRequest) -> list[dict]:
        self.calls += 1
        await asyncio.sleep(0)
        if request.dest_zip in self.failing:
            raise self.error
        ground = round(5 + request.weight, 2)
        return [
            {"service_code": "03", "service_name": "UPS Ground", "totalCharges": ground,
             "carrier_config_id": "cfg-1", "account_name": "Main"},
            {"service_code": "01", "service_name": "UPS Next Day Air",
             "totalCharges": ground * 2, "carrier_config_id": "cfg-1", "account_name": "Main"},
        ]


@pytest.fixture
def fake_provider() -> FakeRateProvider:
    return FakeRateProvider()


# ============================================================================
# Test Data Fixtures
# ============================================================================


@pytest.fixture
def sample_mappings() -> dict[str, str]:
    """Column mapping for ``sample_rows``."""
    return {
        "trackingId": "Tracking",
        "service": "Service",
        "originZip": "From ZIP",
        "destZip": "To ZIP",
        "weight": "Weight",
        "currentRate": "Cost",
        "recipientCity": "City",
        "recipientState": "State",
    }


@pytest.fixture
def sample_rows() -> list[dict[str, str]]:
    """Five uploaded rows; the fourth has no destination ZIP."""
    return [
        {"Tracking": "1Z001", "Service": "GROUND", "From ZIP": "10001", "To ZIP": "90001",
         "Weight": "2.5", "Cost": "15.00", "City": "Los Angeles", "State": "CA"},
        {"Tracking": "1Z002", "Service": "GROUND", "From ZIP": "10001", "To ZIP": "94102",
         "Weight": "1.2", "Cost": "12.50", "City": "San Francisco", "State": "CA"},
        {"Tracking": "1Z003", "Service": "NDA", "From ZIP": "10001", "To ZIP": "92101",
         "Weight": "5.0", "Cost": "48.00", "City": "San Diego", "State": "CA"},
        {"Tracking": "1Z004", "Service": "GROUND", "From ZIP": "10001", "To ZIP": "",
         "Weight": "3.3", "Cost": "14.00", "City": "Portland", "State": "OR"},
        {"Tracking": "1Z005", "Service": "2DA", "From ZIP": "10001", "To ZIP": "98101",
         "Weight": "0.8", "Cost": "22.00", "City": "Seattle", "State": "WA"},
    ]
