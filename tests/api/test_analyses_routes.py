"""Tests for the analyses API routes."""

import json
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from shiprates.api.routes.analyses import _event_generator
from shiprates.services.status_notifier import AnalysisStatusNotifier


class TestStartAnalysis:

    def test_start_and_complete(self, client: TestClient, upload, wait_for_terminal):
        response = client.post("/analyses", json=upload)

        assert response.status_code == 201
        analysis_id = response.json()["analysis_id"]

        body = wait_for_terminal(client, analysis_id)
        assert body["status"] == "completed"
        assert body["processed_shipments"] == 5
        assert body["progress_percentage"] == 100.0
        assert body["processing_metadata"]["ratedShipments"] == 4

    def test_empty_rows_rejected(self, client: TestClient, sample_mappings):
        response = client.post("/analyses", json={"rows": [], "mappings": sample_mappings})

        assert response.status_code == 400
        assert "no rows" in response.json()["detail"]

    def test_missing_mapping_rejected(self, client: TestClient, sample_rows):
        response = client.post(
            "/analyses", json={"rows": sample_rows, "mappings": {"originZip": "From ZIP"}}
        )

        assert response.status_code == 400
        assert "destZip" in response.json()["detail"]

    def test_unknown_markup_profile(self, client: TestClient, upload):
        upload["markup_profile_id"] = "missing"
        assert client.post("/analyses", json=upload).status_code == 404

    def test_malformed_body(self, client: TestClient):
        assert client.post("/analyses", json={"rows": "x"}).status_code == 422


class TestStatus:

    def test_unknown_analysis(self, client: TestClient):
        response = client.get("/analyses/missing/status")
        assert response.status_code == 404

    def test_revision_increases(self, client: TestClient, completed_analysis):
        first = client.get(f"/analyses/{completed_analysis}/status").json()
        client.patch(f"/analyses/{completed_analysis}", json={"file_name": "renamed.csv"})
        second = client.get(f"/analyses/{completed_analysis}/status").json()

        assert second["revision"] == first["revision"] + 1


class TestStatusStream:

    def test_terminal_analysis_streams_single_event(self, client: TestClient, completed_analysis):
        response = client.get(
            f"/analyses/{completed_analysis}/status/stream",
            headers={"Accept": "text/event-stream"},
        )

        assert response.status_code == 200
        assert "text/event-stream" in response.headers.get("content-type", "")
        lines = [line for line in response.text.splitlines() if line.startswith("data:")]

        events = [json.loads(line[len("data:"):]) for line in lines]
        assert len(events) == 1
        assert events[0]["event"] == "status"
        assert events[0]["data"]["status"] == "completed"

    def test_unknown_analysis(self, client: TestClient):
        response = client.get("/analyses/missing/status/stream")
        assert response.status_code == 404

    async def test_updates_older_than_initial_skipped(self):
        notifier = AnalysisStatusNotifier()
        queue = notifier.subscribe("a-1")
        # published before the initial status was read
        await notifier.publish("a-1", {"status": "in_progress", "revision": 2})
        await notifier.publish("a-1", {"status": "in_progress", "revision": 3})
        await notifier.publish("a-1", {"status": "completed", "revision": 4})
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)
        initial = {"status": "in_progress", "revision": 3}

        events = [
            json.loads(item["data"])
            async for item in _event_generator(request, notifier, "a-1", queue, initial)
        ]

        assert [e["data"]["revision"] for e in events] == [3, 4]
        assert events[-1]["data"]["status"] == "completed"
        assert not notifier.has_subscribers("a-1")


class TestSaveAnalysis:

    def test_save_fields(self, client: TestClient, completed_analysis):
        response = client.patch(
            f"/analyses/{completed_analysis}",
            json={"file_name": "renamed.csv", "processing_metadata": {"note": "checked"}},
        )

        assert response.status_code == 200
        metadata = response.json()["processing_metadata"]
        assert metadata["note"] == "checked"
        assert metadata["ratedShipments"] == 4

    def test_empty_update_rejected(self, client: TestClient, completed_analysis):
        assert client.patch(f"/analyses/{completed_analysis}", json={}).status_code == 400

    def test_unknown_field_rejected(self, client: TestClient, completed_analysis):
        response = client.patch(f"/analyses/{completed_analysis}", json={"revision": 1})
        assert response.status_code == 422

    def test_terminal_status_cannot_change(self, client: TestClient, completed_analysis):
        response = client.patch(f"/analyses/{completed_analysis}", json={"status": "in_progress"})
        assert response.status_code == 409

    def test_unknown_analysis(self, client: TestClient):
        response = client.patch("/analyses/missing", json={"file_name": "x.csv"})
        assert response.status_code == 404


class TestHealth:

    def test_health_reports_cache(self, client: TestClient, completed_analysis):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["rate_cache"]["size"] == 4
        assert body["version"]
