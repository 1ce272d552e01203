"""Tests for progressive batch persistence."""

import asyncio
from unittest.mock import MagicMock

import pytest

from shiprates.services.progressive_batcher import (
    BatcherState,
    ProgressiveBatcher,
    shipment_rate_rows,
)
from shiprates.services.rate_lookup import build_completed_shipment
from shiprates.services.shipment_mapping import ShipmentRecord

RATES = [
    {"service_code": "03", "service_name": "Ground", "totalCharges": 9.0, "account_name": "Main"},
    {"service_code": "01", "service_name": "Next Day Air", "totalCharges": 25.0,
     "rateType": "negotiated", "publishedRate": "31.00"},
]


def _completed(index: int):
    record = ShipmentRecord(
        id=index + 1,
        fields={"originZip": "10001", "destZip": "90001", "weight": "2", "currentRate": "12"},
    )
    return build_completed_shipment(record, index, RATES)


@pytest.fixture
def analysis_id(store) -> str:
    return store.create_analysis(total_shipments=200)


class TestShipmentRateRows:

    def test_one_row_per_quote_with_defaults(self):
        rows = shipment_rate_rows("a-1", _completed(7))

        assert len(rows) == 2
        ground, air = rows
        assert ground["shipment_index"] == 7
        assert ground["account_name"] == "Main"
        assert ground["carrier_type"] == "ups"
        assert ground["currency"] == "USD"
        assert ground["is_negotiated"] is False
        assert air["account_name"] == "Unknown"
        assert air["is_negotiated"] is True
        assert air["published_rate"] == 31.0
        assert air["shipment_data"]["id"] == 8


class TestProgressiveBatcher:

    async def test_full_batch_flushes_immediately(self, store, analysis_id):
        batcher = ProgressiveBatcher(store, analysis_id, batch_size=50, batch_timeout=30)

        for i in range(50):
            batcher.add_completed_shipment(_completed(i))

        assert batcher.pending_count() == 0
        assert batcher.state == BatcherState.flushing

        await batcher.finalize_batching()

        assert batcher.state == BatcherState.idle
        assert batcher.batches_saved == 1
        assert len(store.list_shipment_rates(analysis_id)) == 100
        analysis = store.get_analysis(analysis_id)
        assert len(analysis.get_processed_shipments()) == 50
        assert analysis.get_metadata()["progressiveBatchesSaved"] == 1

    async def test_idle_timeout_flushes(self, store, analysis_id):
        saved = asyncio.Event()
        batcher = ProgressiveBatcher(
            store, analysis_id, batch_size=50, batch_timeout=0.02,
            on_batch_saved=lambda count: saved.set(),
        )

        batcher.add_completed_shipment(_completed(0))
        batcher.add_completed_shipment(_completed(1))
        assert batcher.state == BatcherState.accumulating

        await asyncio.wait_for(saved.wait(), 2)

        assert batcher.shipments_saved == 2
        assert batcher.pending_count() == 0

    async def test_each_addition_restarts_idle_timer(self, store, analysis_id):
        saved = asyncio.Event()
        batcher = ProgressiveBatcher(
            store, analysis_id, batch_size=50, batch_timeout=0.2,
            on_batch_saved=lambda count: saved.set(),
        )

        # three additions spaced under the timeout span more than one timeout
        for i in range(3):
            batcher.add_completed_shipment(_completed(i))
            await asyncio.sleep(0.08)

        assert batcher.shipments_saved == 0
        assert batcher.pending_count() == 3

        await asyncio.wait_for(saved.wait(), 2)

        assert batcher.batches_saved == 1
        assert batcher.shipments_saved == 3

    async def test_finalize_flushes_remainder(self, store, analysis_id):
        batcher = ProgressiveBatcher(store, analysis_id, batch_size=50, batch_timeout=30)
        for i in range(3):
            batcher.add_completed_shipment(_completed(i))

        await batcher.finalize_batching()

        assert batcher.shipments_saved == 3
        assert len(store.get_analysis(analysis_id).get_processed_shipments()) == 3

    async def test_batches_land_in_order(self, store, analysis_id):
        batcher = ProgressiveBatcher(store, analysis_id, batch_size=2, batch_timeout=30)
        for i in range(7):
            batcher.add_completed_shipment(_completed(i))

        await batcher.finalize_batching()

        summaries = store.get_analysis(analysis_id).get_processed_shipments()
        assert [s["shipmentIndex"] for s in summaries] == list(range(7))
        assert batcher.batches_saved == 4

    async def test_flush_with_nothing_pending(self, store, analysis_id):
        batcher = ProgressiveBatcher(store, analysis_id)
        assert batcher.flush() is None

    async def test_write_failure_reported(self, analysis_id):
        failing_store = MagicMock()
        failing_store.insert_shipment_rates.side_effect = RuntimeError("database is locked")
        on_error = MagicMock()
        batcher = ProgressiveBatcher(failing_store, analysis_id, batch_size=1, on_error=on_error)

        batcher.add_completed_shipment(_completed(0))
        await batcher.finalize_batching()

        on_error.assert_called_once()
        assert "database is locked" in str(on_error.call_args.args[0])
        assert batcher.batches_saved == 0
        assert batcher.state == BatcherState.idle

    async def test_dispose_cancels_idle_flush(self, analysis_id):
        store = MagicMock()
        batcher = ProgressiveBatcher(store, analysis_id, batch_size=50, batch_timeout=0.01)

        batcher.add_completed_shipment(_completed(0))
        batcher.dispose()
        await asyncio.sleep(0.03)

        store.insert_shipment_rates.assert_not_called()
        assert batcher.pending_count() == 1

    async def test_disposed_batcher_rejects_shipments(self, analysis_id):
        store = MagicMock()
        batcher = ProgressiveBatcher(store, analysis_id, batch_size=50, batch_timeout=0.01)
        batcher.dispose()

        with pytest.raises(RuntimeError, match="disposed"):
            batcher.add_completed_shipment(_completed(0))

        await asyncio.sleep(0.03)
        assert batcher.pending_count() == 0
        store.insert_shipment_rates.assert_not_called()
