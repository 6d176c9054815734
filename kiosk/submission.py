"""Order submission with a durable local queue and background upload sync."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from kiosk.capabilities import Backend, ReceiptPrinter, guarded
from kiosk.cart import generate_line_id
from kiosk.errors import PersistenceError
from kiosk.persistence import KioskStore
from kiosk.settings import KioskSettings
from kiosk.state import KioskState
from kiosk.transactions import PaymentDetails, TransactionRecord, freeze_transaction

logger = logging.getLogger(__name__)


class TransactionSync:
    """Uploads queued records; a single lock serialises drains and one-off uploads."""

    def __init__(self, store: KioskStore, backend: Backend, settings: KioskSettings) -> None:
        self.store = store
        self.backend = backend
        self.settings = settings
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[int]] = set()

    async def _upload(self, record: TransactionRecord) -> bool:
        uploaded = await guarded(
            "upload_transaction",
            lambda: self.backend.upload_transaction(record.mark_uploaded(), self.settings.db_name),
            False,
        )
        if not uploaded:
            return False
        try:
            self.store.dequeue_transaction(record.invoice_id)
        except PersistenceError:
            logger.exception("sync_dequeue_failed invoice_id=%s", record.invoice_id)
            return False
        return True

    async def upload_one(self, record: TransactionRecord) -> bool:
        """Upload a just-submitted record unless a drain already took it."""
        async with self._lock:
            try:
                if not self.store.is_transaction_queued(record.invoice_id):
                    logger.debug("upload_skipped invoice_id=%s reason=not_queued", record.invoice_id)
                    return True
            except PersistenceError:
                logger.exception("sync_queue_read_failed invoice_id=%s", record.invoice_id)
                return False
            return await self._upload(record)

    async def drain(self) -> int:
        """Upload queued records in order, stopping at the first failure. Returns the number uploaded."""
        async with self._lock:
            try:
                pending = self.store.list_queued_transactions()
            except PersistenceError:
                logger.exception("sync_queue_read_failed")
                return 0
            uploaded = 0
            for record in pending:
                if not await self._upload(record):
                    logger.info("sync_stopped invoice_id=%s remaining=%s", record.invoice_id, len(pending) - uploaded)
                    break
                uploaded += 1
            if pending:
                logger.info("sync_finished uploaded=%s pending=%s", uploaded, len(pending))
            return uploaded

    def on_connectivity_changed(self, is_online: bool) -> None:
        """Connectivity listener: start a drain when the kiosk comes back online."""
        if not is_online:
            return
        task = asyncio.get_running_loop().create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_periodic(self, is_online: Callable[[], bool], interval_seconds: float | None = None) -> None:
        interval = interval_seconds if interval_seconds is not None else self.settings.sync_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if is_online():
                await self.drain()


class OrderSubmitter:
    """Turns a paid cart into a queued transaction, then prints and uploads it.

    The record is written to the local queue before any printer or network
    call; once that write succeeds the order is considered submitted.
    """

    def __init__(
        self,
        store: KioskStore,
        backend: Backend,
        settings: KioskSettings,
        printer: ReceiptPrinter | None = None,
        key_factory: Callable[[], str] = generate_line_id,
        sync: TransactionSync | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.settings = settings
        self.printer = printer
        self.key_factory = key_factory
        self.sync = sync if sync is not None else TransactionSync(store, backend, settings)
        self.last_record: TransactionRecord | None = None

    async def submit_order(self, state: KioskState, payment: PaymentDetails) -> bool:
        try:
            invoice_id = self.store.next_invoice_id()
            record = freeze_transaction(
                invoice_id,
                state.cart,
                state.customer,
                state.customer_name,
                payment,
                key_factory=self.key_factory,
                station_id=self.settings.station_id,
                cashier_id=self.settings.cashier_id,
            )
            self.store.enqueue_transaction(record)
        except PersistenceError:
            logger.exception("order_submit_failed stage=persist")
            return False

        self.last_record = record
        logger.info(
            "order_persisted invoice_id=%s short_code=%s grand_total_cents=%s online=%s",
            record.invoice_id,
            record.short_code,
            record.grand_total_cents,
            state.is_online,
        )

        await self._print(record, kitchen_ticket=not state.is_online)

        if state.is_online:
            await self._upload(record)
        else:
            logger.info("order_upload_deferred invoice_id=%s", record.invoice_id)
        return True

    async def _print(self, record: TransactionRecord, kitchen_ticket: bool) -> None:
        if self.printer is None:
            logger.warning("receipt_print_skipped invoice_id=%s reason=no_printer", record.invoice_id)
            return
        try:
            await asyncio.to_thread(self.printer.print_receipt, record)
        except Exception:
            logger.exception("receipt_print_failed invoice_id=%s", record.invoice_id)
        if not kitchen_ticket:
            return
        try:
            await asyncio.to_thread(self.printer.print_kitchen_ticket, record)
        except Exception:
            logger.exception("kitchen_ticket_print_failed invoice_id=%s", record.invoice_id)

    async def _upload(self, record: TransactionRecord) -> bool:
        uploaded = await self.sync.upload_one(record)
        if not uploaded:
            logger.warning("order_upload_failed invoice_id=%s queued=true", record.invoice_id)
        return uploaded
