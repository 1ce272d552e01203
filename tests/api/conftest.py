"""Pytest fixtures for API tests.

Provides a TestClient bound to a file-based SQLite database and the fake
rate provider, plus helpers to wait for background analyses.
"""

import time
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from shiprates.api.main import create_app
from shiprates.config import AppConfig


@pytest.fixture(autouse=True)
def _no_api_key(monkeypatch):
    """Auth is disabled unless a test sets a key."""
    monkeypatch.delenv("SHIPRATES_API_KEY", raising=False)


@pytest.fixture
def api_config(file_based_db: str) -> AppConfig:
    return AppConfig(
        database={"url": file_based_db},
        batching={"batch_size": 2, "batch_timeout_seconds": 30},
    )


@pytest.fixture
def client(api_config: AppConfig, fake_provider) -> Generator[TestClient, None, None]:
    """Create a TestClient running the application lifespan.

    Yields:
        TestClient configured for testing.
    """
    app = create_app(api_config, rate_provider=fake_provider)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def upload(sample_rows, sample_mappings) -> dict:
    """Request body for starting an analysis of the sample rows."""
    return {"rows": sample_rows, "mappings": sample_mappings, "file_name": "march.csv"}


def _wait_for_terminal(client: TestClient, analysis_id: str, timeout: float = 5.0) -> dict:
    """Poll the status endpoint until the analysis is completed or failed."""
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/analyses/{analysis_id}/status").json()
        if body["status"] in ("completed", "failed"):
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"analysis {analysis_id} still {body['status']}")
        time.sleep(0.02)


@pytest.fixture
def wait_for_terminal():
    """Callable polling an analysis until it finishes."""
    return _wait_for_terminal


@pytest.fixture
def completed_analysis(client: TestClient, upload: dict) -> str:
    """Id of an analysis of the sample rows that has finished."""
    analysis_id = client.post("/analyses", json=upload).json()["analysis_id"]
    _wait_for_terminal(client, analysis_id)
    return analysis_id
