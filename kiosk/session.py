"""One kiosk's running session: state, menu, customer, checkout, and sync."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable

from kiosk import state as st
from kiosk.backend import BackendClient
from kiosk.capabilities import Backend, PaymentTerminal, ReceiptPrinter, guarded
from kiosk.cart import ModifierSelection, generate_line_id, new_line
from kiosk.catalog import effective_tax_rate, modifier_groups_for_item, parse_catalog, parse_tax_rates
from kiosk.config import MIN_PHONE_DIGITS
from kiosk.connectivity import ConnectivityMonitor
from kiosk.errors import PersistenceError, ValidationError
from kiosk.inactivity import InactivityTimer
from kiosk.models import CartLine, KioskMode, MenuItem
from kiosk.money import cart_grand_total, cart_subtotal, cart_tax_total
from kiosk.payment import PaymentFlow
from kiosk.persistence import KioskStore
from kiosk.printer import EscposReceiptPrinter
from kiosk.settings import KioskSettings, commit_settings, load_settings
from kiosk.submission import OrderSubmitter, TransactionSync
from kiosk.transactions import PaymentDetails

logger = logging.getLogger(__name__)

MENU_CACHE_KEY = "menu_snapshot"

MENU_UNAVAILABLE_MESSAGE = "Unable to load menu data. Please check your connection."
PHONE_INVALID_MESSAGE = "Please enter a valid phone number"
MEMBER_NOT_FOUND_MESSAGE = "No member found with this number. Try again or continue as guest."
CARD_MEMBER_NOT_FOUND_MESSAGE = "Could not find a member with this QR code."
MEMBER_TOKEN_INVALID_MESSAGE = "Please scan a valid membership card"

ENTRY_SCREENS = {
    KioskMode.ACTIVE: "welcome",
    KioskMode.CLOSED: "closed",
    KioskMode.OUT_OF_ORDER: "out_of_order",
}


def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValidationError(PHONE_INVALID_MESSAGE)
    return digits


class KioskSession:
    def __init__(
        self,
        store: KioskStore,
        settings: KioskSettings,
        backend: Backend,
        terminal: PaymentTerminal,
        printer: ReceiptPrinter | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.backend = backend
        self.state = st.KioskState(kiosk_mode=settings.kiosk_status)

        self.printer = printer
        self.sync = TransactionSync(store, backend, settings)
        self.submitter = OrderSubmitter(store, backend, settings, printer, sync=self.sync)
        self.connectivity = ConnectivityMonitor(backend.is_online, settings.connectivity_probe_seconds)
        self.connectivity.add_listener(self._on_connectivity_changed)
        self.timer = InactivityTimer(self.reset_order, settings.inactivity_timeout_seconds)
        self.payment = PaymentFlow(terminal, backend, self.grand_total, self.submit_order, self.timer)
        self._background: list[asyncio.Task[None]] = []

    def dispatch(self, action: st.Action) -> st.KioskState:
        self.state = st.reduce(self.state, action)
        return self.state

    def _on_connectivity_changed(self, is_online: bool) -> None:
        self.dispatch(st.SetOnline(is_online))
        self.sync.on_connectivity_changed(is_online)

    # Background loops

    @property
    def running(self) -> bool:
        return bool(self._background)

    async def start(self) -> None:
        """Start the connectivity probe and the periodic queue sync."""
        if self._background:
            return
        loop = asyncio.get_running_loop()
        self._background = [
            loop.create_task(self.connectivity.run()),
            loop.create_task(self.sync.run_periodic(lambda: self.state.is_online)),
        ]
        logger.info(
            "session_started probe_seconds=%s sync_seconds=%s",
            self.connectivity.interval_seconds,
            self.settings.sync_interval_seconds,
        )

    async def stop(self) -> None:
        tasks, self._background = self._background, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.timer.disarm()
        logger.info("session_stopped")

    # Settings and mode

    @property
    def entry_screen(self) -> str:
        return ENTRY_SCREENS[self.state.kiosk_mode]

    def apply_settings(self, settings: KioskSettings) -> KioskSettings:
        """Commit new settings and hand them to every component holding a reference."""
        committed = commit_settings(self.store, settings)
        self.settings = committed
        self.submitter.settings = committed
        self.sync.settings = committed
        if isinstance(self.backend, BackendClient):
            self.backend.settings = committed
        if isinstance(self.printer, EscposReceiptPrinter):
            self.printer.settings = committed
        self.connectivity.interval_seconds = committed.connectivity_probe_seconds
        self.timer.timeout_seconds = committed.inactivity_timeout_seconds
        self.dispatch(st.SetKioskMode(committed.kiosk_status))
        return committed

    # Menu

    async def load_menu(self) -> bool:
        """Fetch the menu, falling back to the cached snapshot when the backend is unreachable."""
        self.dispatch(st.SetError(None))
        db_name = self.settings.db_name
        payload = await guarded("fetch_menu", lambda: self.backend.fetch_menu(db_name), None)
        is_online = payload is not None
        tax_rows: list[dict[str, Any]] = []

        if payload is not None:
            tax_rows = await guarded("fetch_tax_rates", lambda: self.backend.fetch_tax_rates(db_name), [])
            try:
                self.store.persist_setting(MENU_CACHE_KEY, {"menu": payload, "taxRates": tax_rows})
            except PersistenceError:
                logger.exception("menu_cache_write_failed")
        else:
            try:
                cached = self.store.load_setting(MENU_CACHE_KEY)
            except PersistenceError:
                logger.exception("menu_cache_read_failed")
                cached = None
            if not cached:
                logger.warning("menu_unavailable db=%s", db_name)
                self.dispatch(st.SetError(MENU_UNAVAILABLE_MESSAGE))
                return False
            payload = cached["menu"]
            tax_rows = cached.get("taxRates") or []

        catalog = parse_catalog(payload, parse_tax_rates(tax_rows))
        self.dispatch(st.SetCatalog(catalog, is_online))
        self.connectivity.set_online(is_online)
        logger.info(
            "menu_loaded source=%s items=%s departments=%s",
            "backend" if is_online else "cache",
            len(catalog.items),
            len(catalog.departments),
        )
        return True

    def select_department(self, department_id: str | None) -> None:
        self.dispatch(st.SelectDepartment(department_id))
        self.timer.touch()

    # Cart

    def start_item(self, item: MenuItem) -> ModifierSelection:
        groups = modifier_groups_for_item(self.state.catalog, item.item_id) if self.state.catalog else []
        return ModifierSelection(item=item, groups=groups)

    def add_item(
        self,
        item: MenuItem,
        selection: ModifierSelection | None = None,
        *,
        quantity: int = 1,
        price_override_cents: int | None = None,
    ) -> CartLine:
        """Add ``item`` with its chosen modifiers; raises ValidationError for unmet forced groups."""
        line_id = generate_line_id()
        modifiers = selection.build_lines(line_id) if selection is not None else ()
        line = new_line(
            item,
            modifiers,
            quantity=quantity,
            tax_rate=effective_tax_rate(self.state.catalog, item),
            price_override_cents=price_override_cents,
            line_id=line_id,
        )
        self.dispatch(st.AddToCart(line))
        self.timer.arm()
        return line

    def remove_line(self, line_id: str) -> None:
        self.dispatch(st.RemoveFromCart(line_id))
        self.timer.touch()

    def update_quantity(self, line_id: str, quantity: int) -> None:
        self.dispatch(st.UpdateQuantity(line_id, quantity))
        self.timer.touch()

    def clear_cart(self) -> None:
        self.dispatch(st.ClearCart())

    def subtotal(self) -> int:
        return cart_subtotal(self.state.cart)

    def tax_total(self) -> int:
        return cart_tax_total(self.state.cart)

    def grand_total(self) -> int:
        return cart_grand_total(self.state.cart)

    # Customer

    def continue_as_guest(self) -> None:
        self.dispatch(st.ContinueAsGuest())
        self.timer.touch()

    async def search_loyalty_by_phone(self, phone: str) -> bool:
        try:
            digits = normalize_phone(phone)
        except ValidationError as exc:
            self.dispatch(st.SetError(str(exc)))
            return False
        self.dispatch(st.SetError(None))
        profile = await guarded("loyalty_by_phone", lambda: self.backend.search_loyalty_by_phone(digits), None)
        if profile is None:
            self.dispatch(st.SetError(MEMBER_NOT_FOUND_MESSAGE))
            return False
        self.dispatch(st.IdentifyMember(profile))
        self.timer.touch()
        return True

    async def search_loyalty_by_token(self, token: str) -> bool:
        token = (token or "").strip()
        if not token:
            self.dispatch(st.SetError(MEMBER_TOKEN_INVALID_MESSAGE))
            return False
        self.dispatch(st.SetError(None))
        profile = await guarded("loyalty_by_token", lambda: self.backend.search_loyalty_by_token(token), None)
        if profile is None:
            self.dispatch(st.SetError(CARD_MEMBER_NOT_FOUND_MESSAGE))
            return False
        self.dispatch(st.IdentifyMember(profile))
        self.timer.touch()
        return True

    def set_customer_name(self, name: str) -> None:
        self.dispatch(st.SetCustomerName(name))
        self.timer.touch()

    # Checkout

    async def submit_order(self, payment: PaymentDetails) -> bool:
        """Submit the paid cart; the order is cleared only when submission succeeds."""
        submitted = await self.submitter.submit_order(self.state, payment)
        if submitted:
            self.dispatch(st.ResetOrder())
            self.timer.disarm()
        return submitted

    def reset_order(self) -> None:
        """Abandon the in-progress order and return to the entry screen."""
        logger.info("order_reset cart_lines=%s", len(self.state.cart))
        self.dispatch(st.ResetOrder())
        self.payment.reset()
        self.timer.disarm()

    def start_next_order(self) -> None:
        self.payment.reset()


def build_session(
    store: KioskStore,
    encrypt: Callable[[str], str],
    terminal: PaymentTerminal,
    transport: Any = None,
) -> KioskSession:
    """Assemble a session from persisted settings with the HTTP backend and ESC/POS printer."""
    store.bootstrap_schema()
    settings = load_settings(store)
    backend = BackendClient(settings, encrypt, transport=transport)
    return KioskSession(store, settings, backend, terminal, EscposReceiptPrinter(settings))
