"""End-to-end tests for AnalysisPipeline against a file-based SQLite store."""

import asyncio
from unittest.mock import patch

import pytest

from shiprates.config import AppConfig
from shiprates.db.connection import create_session_factory, init_db
from shiprates.errors import AuthenticationError, NotFoundError, ValidationError
from shiprates.services.analysis_pipeline import AnalysisPipeline
from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.rate_cache import RateCache, RequestDeduplicator
from shiprates.services.rate_lookup import RateLookupService
from shiprates.services.status_notifier import AnalysisStatusNotifier


@pytest.fixture
def file_store(file_based_db) -> AnalysisStore:
    factory = create_session_factory(file_based_db)
    init_db(factory)
    yield AnalysisStore(factory)
    factory.kw["bind"].dispose()


@pytest.fixture
def notifier() -> AnalysisStatusNotifier:
    return AnalysisStatusNotifier()


@pytest.fixture
def pipeline(file_store, fake_provider, notifier) -> AnalysisPipeline:
    lookup = RateLookupService(fake_provider, RateCache(), RequestDeduplicator())
    config = AppConfig(batching={"batch_size": 2, "batch_timeout_seconds": 30})
    return AnalysisPipeline(file_store, lookup, config=config, notifier=notifier)


async def _run(pipeline, rows, mappings, **kwargs) -> str:
    analysis_id = await pipeline.start_analysis(rows, mappings, **kwargs)
    await pipeline.shutdown()
    return analysis_id


class TestStartAnalysis:

    async def test_empty_upload_rejected(self, pipeline, sample_mappings):
        with pytest.raises(ValidationError, match="no rows"):
            await pipeline.start_analysis([], sample_mappings)

    async def test_incomplete_mapping_rejected(self, pipeline, sample_rows):
        with pytest.raises(ValidationError, match="weight"):
            await pipeline.start_analysis(sample_rows, {"originZip": "From ZIP", "destZip": "To ZIP"})

    async def test_unknown_markup_profile(self, pipeline, sample_rows, sample_mappings):
        with pytest.raises(NotFoundError):
            await pipeline.start_analysis(sample_rows, sample_mappings, markup_profile_id="nope")

    async def test_returns_pending_analysis_id(self, pipeline, file_store, sample_rows, sample_mappings):
        analysis_id = await pipeline.start_analysis(
            sample_rows, sample_mappings, file_name="march.csv"
        )

        analysis = file_store.get_analysis(analysis_id)
        assert analysis.total_shipments == 5
        assert analysis.file_name == "march.csv"
        await pipeline.shutdown()


class TestRunAnalysis:

    async def test_completes_with_invalid_rows_recorded(
        self, pipeline, file_store, sample_rows, sample_mappings
    ):
        analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        metadata = status["processing_metadata"]
        assert status["status"] == "completed"
        assert status["processed_shipments"] == 5
        assert [s["shipmentIndex"] for s in metadata["invalidShipments"]] == [3]
        assert metadata["ratedShipments"] == 4
        assert metadata["errorShipments"] == []
        assert metadata["progressiveBatchesCompleted"] == 2
        # ground quotes are 5 + weight against the uploaded cost
        assert status["total_savings"] == pytest.approx(68.0)

        rates = file_store.list_shipment_rates(analysis_id)
        assert len(rates) == 8
        assert {r.shipment_index for r in rates} == {0, 1, 2, 4}

    async def test_default_markup_profile_applied(
        self, pipeline, file_store, sample_rows, sample_mappings
    ):
        file_store.create_markup_profile("Ten", "global", {"global_percentage": 10}, is_default=True)

        analysis_id = await _run(pipeline, sample_rows[:1], sample_mappings)

        analysis = file_store.get_analysis(analysis_id)
        summary = analysis.get_processed_shipments()[0]
        assert analysis.markup_profile_id is not None
        assert summary["baseRate"] == 7.5
        assert summary["finalRate"] == pytest.approx(8.25)
        assert summary["markupPercentage"] == 10

    async def test_origin_override(self, pipeline, file_store, sample_rows, sample_mappings):
        analysis_id = await _run(
            pipeline, sample_rows[:2], sample_mappings, origin_zip_override="30301"
        )

        summaries = file_store.get_analysis(analysis_id).get_processed_shipments()
        assert {s["originZip"] for s in summaries} == {"30301"}

    async def test_quote_failure_does_not_stop_batch(
        self, pipeline, file_store, fake_provider, sample_rows, sample_mappings
    ):
        fake_provider.failing.add("94102")

        analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        errors = status["processing_metadata"]["errorShipments"]
        assert status["status"] == "completed"
        assert status["processed_shipments"] == 5
        assert [e["shipmentIndex"] for e in errors] == [1]
        assert "carrier timeout" in errors[0]["error"]

    async def test_unsaved_progress_does_not_stop_batch(
        self, pipeline, file_store, sample_rows, sample_mappings, monkeypatch
    ):
        record_progress = file_store.record_progress
        calls = []

        def flaky_record_progress(analysis_id, **kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise RuntimeError("database is locked")
            return record_progress(analysis_id, **kwargs)

        monkeypatch.setattr(file_store, "record_progress", flaky_record_progress)

        analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        assert status["status"] == "completed"
        assert status["processing_metadata"]["ratedShipments"] == 4
        # one rated shipment's progress was lost
        assert status["processed_shipments"] == 4
        assert len(file_store.list_shipment_rates(analysis_id)) == 8

    async def test_no_rates_written_after_unexpected_failure(
        self, pipeline, file_store, sample_rows, sample_mappings, monkeypatch
    ):
        rate_shipment = pipeline._rate_shipment

        async def crashing_rate_shipment(record, index, *args):
            if index == 0:
                raise RuntimeError("markup table corrupt")
            await asyncio.sleep(0.05)
            return await rate_shipment(record, index, *args)

        monkeypatch.setattr(pipeline, "_rate_shipment", crashing_rate_shipment)

        analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        assert status["status"] == "failed"
        assert status["processing_metadata"]["error"]["code"] == "E-4004"
        rates_at_failure = len(file_store.list_shipment_rates(analysis_id))

        await asyncio.sleep(0.15)

        assert len(file_store.list_shipment_rates(analysis_id)) == rates_at_failure == 0

    async def test_authentication_failure_fails_analysis(
        self, pipeline, file_store, fake_provider, sample_rows, sample_mappings
    ):
        fake_provider.error = AuthenticationError("token expired")
        fake_provider.failing.update({"90001", "94102", "92101", "98101"})

        analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        assert status["status"] == "failed"
        assert status["processing_metadata"]["error"]["code"] == "E-5002"

    async def test_all_rows_invalid(self, pipeline, file_store, sample_mappings):
        rows = [{"From ZIP": "1", "To ZIP": "2", "Weight": "0"}] * 3

        analysis_id = await _run(pipeline, rows, sample_mappings)

        status = file_store.get_status(analysis_id)
        assert status["status"] == "failed"
        assert status["processed_shipments"] == 3
        assert status["processing_metadata"]["error"]["code"] == "E-2003"

    async def test_worker_crash_fails_analysis(self, pipeline, file_store, sample_rows, sample_mappings):
        with patch.object(
            pipeline.worker, "process_in_chunks", side_effect=RuntimeError("worker died")
        ):
            analysis_id = await _run(pipeline, sample_rows, sample_mappings)

        error = file_store.get_status(analysis_id)["processing_metadata"]["error"]
        assert error["code"] == "E-4004"
        assert "worker died" in error["message"]

    async def test_status_pushed_until_completed(
        self, pipeline, notifier, sample_rows, sample_mappings
    ):
        analysis_id = await pipeline.start_analysis(sample_rows, sample_mappings)
        queue = notifier.subscribe(analysis_id)
        await pipeline.shutdown()

        events = []
        while not queue.empty():
            events.append(queue.get_nowait()["data"])

        assert events[-1]["status"] == "completed"
        revisions = [e["revision"] for e in events]
        assert revisions == sorted(revisions)
