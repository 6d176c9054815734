"""
Tests for order submission, the offline queue, and background sync.
"""

import asyncio
import sqlite3

import pytest

from conftest import FakePrinter
from kiosk import state as st
from kiosk.cart import new_line
from kiosk.errors import PersistenceError
from kiosk.models import PaymentMethod
from kiosk.submission import OrderSubmitter, TransactionSync
from kiosk.transactions import PaymentDetails

CARD = PaymentDetails(method=PaymentMethod.CARD, card_number="****1111", retref="HREF42")


def _state(burger, fries, is_online):
    return st.KioskState(cart=(new_line(burger, quantity=2), new_line(fries)), is_online=is_online)


class TestSubmitOrder:
    @pytest.mark.asyncio
    async def test_online_submission_uploads_and_dequeues(self, store, backend, settings, printer, burger, fries):
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, True), CARD) is True

        (uploaded,) = backend.uploaded
        assert uploaded.invoice_id == 1001
        assert uploaded.uploaded is True
        assert uploaded.grand_total_cents == 2028
        assert store.queued_count() == 0
        assert printer.receipts == [1001]
        assert printer.kitchen_tickets == []

    @pytest.mark.asyncio
    async def test_scenario_d_offline_submission(self, store, backend, settings, printer, burger, fries):
        """Offline: receipt and kitchen ticket print, no upload, record stays queued."""
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, False), CARD) is True

        assert printer.receipts == [1001]
        assert printer.kitchen_tickets == [1001]
        assert backend.uploaded == []
        assert [r.invoice_id for r in store.list_queued_transactions()] == [1001]

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_record_queued(self, store, backend, settings, printer, burger, fries):
        backend.upload_results = [False]
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, True), CARD) is True
        assert store.queued_count() == 1

    @pytest.mark.asyncio
    async def test_upload_exception_is_contained(self, store, backend, settings, printer, burger, fries):
        backend.upload_results = [ConnectionError("timeout")]
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, True), CARD) is True
        assert store.queued_count() == 1

    @pytest.mark.asyncio
    async def test_printer_failure_does_not_fail_submission(self, store, backend, settings, burger, fries):
        printer = FakePrinter(fail=True)
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, False), CARD) is True
        assert printer.receipts == [1001]
        assert printer.kitchen_tickets == [1001]
        assert store.queued_count() == 1

    @pytest.mark.asyncio
    async def test_persist_failure_returns_false_before_side_effects(
        self, store, backend, settings, printer, burger, fries, monkeypatch
    ):
        def broken(record):
            raise PersistenceError("disk full")

        monkeypatch.setattr(store, "enqueue_transaction", broken)
        submitter = OrderSubmitter(store, backend, settings, printer)

        assert await submitter.submit_order(_state(burger, fries, True), CARD) is False
        assert printer.receipts == []
        assert backend.uploaded == []

    @pytest.mark.asyncio
    async def test_invoice_ids_increase(self, store, backend, settings, printer, burger, fries):
        submitter = OrderSubmitter(store, backend, settings, printer)

        for _ in range(3):
            await submitter.submit_order(_state(burger, fries, True), CARD)

        assert [r.invoice_id for r in backend.uploaded] == [1001, 1002, 1003]
        assert submitter.last_record.short_code == "K1003"


class TestTransactionSync:
    async def _queue(self, store, backend, settings, burger, fries, count):
        submitter = OrderSubmitter(store, backend, settings, None)
        for _ in range(count):
            await submitter.submit_order(_state(burger, fries, False), CARD)

    @pytest.mark.asyncio
    async def test_drain_uploads_in_fifo_order(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 3)
        sync = TransactionSync(store, backend, settings)

        assert await sync.drain() == 3

        assert [r.invoice_id for r in backend.uploaded] == [1001, 1002, 1003]
        assert store.queued_count() == 0

    @pytest.mark.asyncio
    async def test_drain_stops_at_first_failure(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 3)
        backend.upload_results = [True, False, True]
        sync = TransactionSync(store, backend, settings)

        assert await sync.drain() == 1

        assert [r.invoice_id for r in store.list_queued_transactions()] == [1002, 1003]

    @pytest.mark.asyncio
    async def test_concurrent_drains_do_not_double_upload(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 2)
        sync = TransactionSync(store, backend, settings)

        results = await asyncio.gather(sync.drain(), sync.drain())

        assert sorted(results) == [0, 2]
        assert [r.invoice_id for r in backend.uploaded] == [1001, 1002]

    @pytest.mark.asyncio
    async def test_connectivity_restored_triggers_drain(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 1)
        sync = TransactionSync(store, backend, settings)

        sync.on_connectivity_changed(False)
        await asyncio.sleep(0)
        assert store.queued_count() == 1

        sync.on_connectivity_changed(True)
        for _ in range(5):
            await asyncio.sleep(0)

        assert store.queued_count() == 0

    @pytest.mark.asyncio
    async def test_corrupt_row_does_not_block_later_records(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 1)
        with sqlite3.connect(store.db_path) as conn:
            conn.execute(
                "INSERT INTO pending_transactions (invoice_id, created_at, payload) VALUES (?, ?, ?)",
                (9999, "2026-03-01T00:00:00+00:00", "{}"),
            )
        await self._queue(store, backend, settings, burger, fries, 1)
        sync = TransactionSync(store, backend, settings)

        assert await sync.drain() == 2

        assert [r.invoice_id for r in backend.uploaded] == [1001, 1002]
        assert store.queued_count() == 1

    @pytest.mark.asyncio
    async def test_upload_one_skips_record_already_drained(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 1)
        (record,) = store.list_queued_transactions()
        sync = TransactionSync(store, backend, settings)
        await sync.drain()

        assert await sync.upload_one(record) is True

        assert [r.invoice_id for r in backend.uploaded] == [1001]

    @pytest.mark.asyncio
    async def test_drain_and_submission_upload_each_invoice_once(self, store, backend, settings, burger, fries):
        await self._queue(store, backend, settings, burger, fries, 1)
        sync = TransactionSync(store, backend, settings)
        submitter = OrderSubmitter(store, backend, settings, None, sync=sync)

        await asyncio.gather(sync.drain(), submitter.submit_order(_state(burger, fries, True), CARD))

        assert sorted(r.invoice_id for r in backend.uploaded) == [1001, 1002]
        assert store.queued_count() == 0
