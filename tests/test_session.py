"""
Tests for the kiosk session: menu loading, ordering, customers, and checkout.
"""

import asyncio
from dataclasses import replace

import httpx
import pytest

from conftest import MENU_PAYLOAD
from kiosk import state as st
from kiosk.backend import BackendClient
from kiosk.catalog import find_item
from kiosk.errors import ValidationError
from kiosk.models import CustomerKind, KioskMode, PaymentMethod
from kiosk.payment import PaymentStep
from kiosk.printer import EscposReceiptPrinter
from kiosk.session import (
    MEMBER_NOT_FOUND_MESSAGE,
    MENU_CACHE_KEY,
    MENU_UNAVAILABLE_MESSAGE,
    PHONE_INVALID_MESSAGE,
    KioskSession,
    build_session,
    normalize_phone,
)
from kiosk.settings import load_settings
from kiosk.transactions import PaymentDetails


@pytest.fixture
def session(store, settings, backend, terminal, printer):
    return KioskSession(store, settings, backend, terminal, printer)


async def _loaded(session):
    assert await session.load_menu() is True
    return session


class TestMenu:
    @pytest.mark.asyncio
    async def test_load_menu_online_caches_snapshot(self, session, store):
        await _loaded(session)

        assert session.state.is_online
        assert session.connectivity.is_online
        assert [d.name for d in st.visible_departments(session.state)] == ["Sides", "Mains"]
        assert store.load_setting(MENU_CACHE_KEY)["taxRates"] == [{"taxNo": 1, "taxRate": 8.25}]

    @pytest.mark.asyncio
    async def test_load_menu_falls_back_to_cache(self, session, backend):
        await _loaded(session)
        backend.menu = None

        assert await session.load_menu() is True

        assert session.state.is_online is False
        assert find_item(session.state.catalog, "BURGER") is not None

    @pytest.mark.asyncio
    async def test_load_menu_without_cache_sets_error(self, session, backend):
        backend.menu = None

        assert await session.load_menu() is False

        assert session.state.catalog is None
        assert session.state.error == MENU_UNAVAILABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_department_filter(self, session):
        await _loaded(session)

        session.select_department("D2")

        assert [item.item_id for item in st.filtered_items(session.state)] == ["FRIES"]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_add_item_with_modifier_selection(self, session):
        await _loaded(session)
        burger = find_item(session.state.catalog, "BURGER")
        selection = session.start_item(burger)
        selection.toggle(10, "CHEESE")
        selection.toggle(10, "BACON")

        line = session.add_item(burger, selection)

        (modifier,) = line.modifiers
        assert modifier.item.item_id == "BACON"
        assert modifier.parent_item_id == line.line_id
        assert session.subtotal() == 925
        assert session.tax_total() == 74
        assert session.grand_total() == 999
        assert session.timer.armed
        session.timer.disarm()

    @pytest.mark.asyncio
    async def test_untaxed_item_snapshots_store_rate(self, session):
        await _loaded(session)

        line = session.add_item(find_item(session.state.catalog, "FRIES"), quantity=2)

        assert str(line.tax_rate) == "8.25"
        assert session.tax_total() == 0
        session.timer.disarm()

    @pytest.mark.asyncio
    async def test_forced_group_must_be_selected(self, session):
        await _loaded(session)
        burger = find_item(session.state.catalog, "BURGER")
        selection = session.start_item(burger)
        selection.groups = [replace(group, forced=True) for group in selection.groups]

        with pytest.raises(ValidationError, match="Toppings"):
            session.add_item(burger, selection)
        assert session.state.cart == ()

    @pytest.mark.asyncio
    async def test_quantity_and_removal(self, session):
        await _loaded(session)
        line = session.add_item(find_item(session.state.catalog, "FRIES"))

        session.update_quantity(line.line_id, 3)
        assert session.subtotal() == 900

        session.remove_line(line.line_id)
        assert session.state.cart == ()
        session.timer.disarm()

    @pytest.mark.asyncio
    async def test_inactivity_resets_order(self, session, settings):
        session.apply_settings(replace(settings, inactivity_timeout_seconds=0.01))
        await _loaded(session)
        session.add_item(find_item(session.state.catalog, "FRIES"))
        session.set_customer_name("Sam")

        await asyncio.sleep(0.05)

        assert session.state.cart == ()
        assert session.state.customer_name == ""
        assert not session.timer.armed


class TestCustomer:
    def test_normalize_phone(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"
        with pytest.raises(ValidationError):
            normalize_phone("555-1234")

    @pytest.mark.asyncio
    async def test_member_lookup_by_phone(self, session, backend, member):
        backend.profiles["5551234567"] = member

        assert await session.search_loyalty_by_phone("(555) 123-4567") is True

        assert session.state.customer.kind is CustomerKind.MEMBER
        assert session.state.customer_name == "Ana Lopez"
        assert session.state.error is None

    @pytest.mark.asyncio
    async def test_short_phone_is_rejected(self, session):
        assert await session.search_loyalty_by_phone("12345") is False
        assert session.state.error == PHONE_INVALID_MESSAGE

    @pytest.mark.asyncio
    async def test_unknown_member(self, session):
        assert await session.search_loyalty_by_phone("5550000000") is False
        assert session.state.error == MEMBER_NOT_FOUND_MESSAGE
        assert session.state.customer.kind is CustomerKind.UNSET

    @pytest.mark.asyncio
    async def test_member_lookup_by_card_token(self, session, backend, member):
        backend.profiles["QR-7"] = member

        assert await session.search_loyalty_by_token(" QR-7 ") is True
        assert session.state.customer.profile.customer_id == "C-7"

    def test_guest(self, session):
        session.continue_as_guest()

        assert session.state.customer.kind is CustomerKind.GUEST


class TestCheckout:
    @pytest.mark.asyncio
    async def test_scenario_a_card_checkout(self, session, backend, terminal, printer, member):
        """Member orders, pays by card, and the order is uploaded and cleared."""
        await _loaded(session)
        backend.profiles["5551234567"] = member
        await session.search_loyalty_by_phone("5551234567")
        session.add_item(find_item(session.state.catalog, "BURGER"), quantity=2)
        session.add_item(find_item(session.state.catalog, "FRIES"))
        session.payment.choose_card()

        assert await session.payment.pay_by_card() is True

        assert terminal.charges[0][1] == 2028
        assert session.payment.step is PaymentStep.SUCCESS
        (uploaded,) = backend.uploaded
        assert uploaded.grand_total_cents == 2028
        assert uploaded.customer_id == "C-7"
        assert printer.receipts == [uploaded.invoice_id]
        assert session.state.cart == ()
        assert session.state.customer.kind is CustomerKind.UNSET
        assert not session.timer.armed

        session.start_next_order()
        assert session.payment.step is PaymentStep.SELECT

    @pytest.mark.asyncio
    async def test_failed_submission_keeps_cart(self, session, monkeypatch):
        await _loaded(session)
        session.add_item(find_item(session.state.catalog, "FRIES"))

        async def refuse(state, payment):
            return False

        monkeypatch.setattr(session.submitter, "submit_order", refuse)

        assert await session.submit_order(PaymentDetails(method=PaymentMethod.CARD)) is False
        assert len(session.state.cart) == 1
        session.timer.disarm()

    def test_reset_order_clears_payment(self, session):
        session.payment.choose_gift_card()
        session.set_customer_name("Sam")

        session.reset_order()

        assert session.payment.step is PaymentStep.SELECT
        assert session.state.customer_name == ""


class TestSettings:
    def test_apply_settings_switches_entry_screen(self, session, store, settings):
        assert session.entry_screen == "welcome"

        session.apply_settings(replace(settings, kiosk_status=KioskMode.CLOSED))

        assert session.entry_screen == "closed"
        assert load_settings(store).kiosk_status is KioskMode.CLOSED
        assert session.submitter.settings.kiosk_status is KioskMode.CLOSED

    @pytest.mark.asyncio
    async def test_connectivity_flip_updates_state(self, session, backend):
        backend.online = True

        assert await session.connectivity.check() is True
        assert session.state.is_online

        backend.online = False
        await session.connectivity.check()
        assert session.state.is_online is False


async def _wait_until(condition, attempts=100):
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


class TestBackgroundLoops:
    @pytest.fixture
    def fast_session(self, store, settings, backend, terminal, printer):
        fast = replace(settings, sync_interval_seconds=0.01, connectivity_probe_seconds=0.01)
        return KioskSession(store, fast, backend, terminal, printer)

    @pytest.mark.asyncio
    async def test_reconnect_drains_offline_queue(self, fast_session, store, backend, burger):
        backend.online = False
        fast_session.add_item(burger)
        assert await fast_session.submit_order(PaymentDetails(method=PaymentMethod.CARD)) is True
        assert store.queued_count() == 1

        await fast_session.start()
        try:
            await asyncio.sleep(0.05)
            assert store.queued_count() == 1
            assert fast_session.state.is_online is False

            backend.online = True

            assert await _wait_until(lambda: store.queued_count() == 0)
            assert fast_session.state.is_online
            assert [r.invoice_id for r in backend.uploaded] == [1001]
        finally:
            await fast_session.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_loops(self, fast_session):
        await fast_session.start()
        tasks = list(fast_session._background)
        await fast_session.start()
        assert fast_session._background == tasks

        await fast_session.stop()

        assert not fast_session.running
        assert all(task.done() for task in tasks)


@pytest.mark.asyncio
async def test_build_session_uses_http_backend_and_escpos_printer(store, terminal):
    def handler(request):
        if request.url.path == "/POS":
            return httpx.Response(200, json=MENU_PAYLOAD)
        if request.url.path == "/TaxRate":
            return httpx.Response(200, json=[{"taxNo": 1, "taxRate": 8.25}])
        return httpx.Response(404)

    session = build_session(store, lambda plain: plain, terminal, transport=httpx.MockTransport(handler))

    assert isinstance(session.backend, BackendClient)
    assert isinstance(session.submitter.printer, EscposReceiptPrinter)
    assert await session.load_menu() is True
    assert find_item(session.state.catalog, "BURGER").price_cents == 800

    session.apply_settings(replace(session.settings, printer_type="network", printer_address="10.0.0.9"))
    assert session.submitter.printer.settings.printer_type == "network"
    assert session.backend.settings.printer_address == "10.0.0.9"
