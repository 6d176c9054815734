"""
Pytest fixtures and in-memory collaborators for kiosk engine tests.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from kiosk.capabilities import ChargeResult, EntryMode, GiftCardBalance, GiftCardRedemption
from kiosk.models import LoyaltyProfile, MenuItem
from kiosk.persistence import KioskStore
from kiosk.settings import KioskSettings
from kiosk.transactions import TransactionRecord

APPROVED_RESPONSE = {
    "ResponseCode": "000000",
    "ResponseMessage": "OK",
    "hostInformation": {"hostReferenceNumber": "HREF42", "authCode": "AUTH01"},
    "accountInformation": {"account": "************1111", "cardType": "VISA", "entryMode": "CHIP"},
    "amountInformation": {"approvedAmount": "2028"},
}

MENU_PAYLOAD: dict[str, Any] = {
    "departments": [
        {"deptId": "D1", "deptName": "Mains", "visible": "OK", "listOrder": 2},
        {"deptId": "D2", "deptName": "Sides", "visible": "Y", "listOrder": 1},
        {"deptId": "D3", "deptName": "Staff", "visible": "N", "listOrder": 0},
    ],
    "items": [
        {"itemId": "BURGER", "itemName": "Burger", "itemPrice": 8.0, "tax1Status": "OK", "taxRate": 8,
         "itemDeptId": "D1", "visible": "OK"},
        {"itemId": "FRIES", "itemName": "Fries", "itemPrice": 3.0, "tax1Status": "", "itemDeptId": "D2",
         "visible": "OK"},
        {"itemId": "CHEESE", "itemName": "Cheese", "itemPrice": 0.5, "isModifier": True, "visible": "OK"},
        {"itemId": "BACON", "itemName": "Bacon", "itemPrice": 1.25, "isModifier": True, "visible": "OK"},
        {"itemId": "OLD", "itemName": "Retired", "itemPrice": 1.0, "visible": "OK", "isDeleted": True},
    ],
    "modifierGroups": [
        {"modifierGroupId": 10, "groupName": "Toppings", "maximumSelect": 1, "forced": False},
    ],
    "modifiersOfItems": [
        {"itemId": "BURGER", "modifierGroupId": 10},
        {"itemId": "CHEESE", "modifierGroupId": 10},
        {"itemId": "BACON", "modifierGroupId": 10},
    ],
    "businessInfo": [{"storeId": "42", "businessName": "Test Diner"}],
}


class FakeTerminal:
    """Payment terminal returning scripted results; ``"hang"`` blocks until cancelled."""

    def __init__(self, results: list[Any] | None = None) -> None:
        self.results = list(results or [])
        self.charges: list[tuple[str, int, EntryMode, str]] = []
        self.cancel_calls = 0
        self.cancel_error: Exception | None = None
        self.batch_result: Any = ChargeResult(approved=True, response_code="000000", response_message="OK")

    async def charge(self, transaction_type: str, amount_cents: int, entry_mode: EntryMode, reference: str):
        self.charges.append((transaction_type, amount_cents, entry_mode, reference))
        result = self.results.pop(0) if self.results else ChargeResult.from_response(APPROVED_RESPONSE)
        if result == "hang":
            await asyncio.Event().wait()
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel(self) -> None:
        self.cancel_calls += 1
        if self.cancel_error is not None:
            raise self.cancel_error

    async def close_batch(self) -> ChargeResult:
        if isinstance(self.batch_result, Exception):
            raise self.batch_result
        return self.batch_result


class FakeBackend:
    def __init__(self) -> None:
        self.online = True
        self.menu: dict[str, Any] | None = MENU_PAYLOAD
        self.tax_rows: list[dict[str, Any]] = [{"taxNo": 1, "taxRate": 8.25}]
        self.upload_results: list[Any] = []
        self.uploaded: list[TransactionRecord] = []
        self.profiles: dict[str, LoyaltyProfile] = {}
        self.balance: GiftCardBalance | None = None
        self.redemption: GiftCardRedemption | Exception | None = None
        self.redeem_calls: list[tuple[str, int]] = []

    async def is_online(self) -> bool:
        return self.online

    async def fetch_menu(self, store_identifier: str):
        return self.menu

    async def fetch_tax_rates(self, store_identifier: str):
        return self.tax_rows

    async def upload_transaction(self, record: TransactionRecord, store_identifier: str) -> bool:
        result = self.upload_results.pop(0) if self.upload_results else True
        if isinstance(result, Exception):
            raise result
        if result:
            self.uploaded.append(record)
        return result

    async def search_loyalty_by_phone(self, phone: str):
        return self.profiles.get(phone)

    async def search_loyalty_by_token(self, token: str):
        return self.profiles.get(token)

    async def check_gift_card_balance(self, token: str):
        return self.balance

    async def redeem_gift_card(self, token: str, amount_cents: int):
        self.redeem_calls.append((token, amount_cents))
        if isinstance(self.redemption, Exception):
            raise self.redemption
        return self.redemption


class FakePrinter:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.receipts: list[int] = []
        self.kitchen_tickets: list[int] = []

    def print_receipt(self, record: TransactionRecord) -> None:
        self.receipts.append(record.invoice_id)
        if self.fail:
            raise OSError("printer offline")

    def print_kitchen_ticket(self, record: TransactionRecord) -> None:
        self.kitchen_tickets.append(record.invoice_id)
        if self.fail:
            raise OSError("printer offline")


@pytest.fixture
def store(tmp_path) -> KioskStore:
    kiosk_store = KioskStore(tmp_path / "kiosk.db")
    kiosk_store.bootstrap_schema()
    return kiosk_store


@pytest.fixture
def settings() -> KioskSettings:
    return KioskSettings(db_name="170", store_id="42")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def terminal() -> FakeTerminal:
    return FakeTerminal()


@pytest.fixture
def printer() -> FakePrinter:
    return FakePrinter()


@pytest.fixture
def burger() -> MenuItem:
    return MenuItem(item_id="BURGER", name="Burger", price_cents=800, taxable=True, tax_rate=Decimal("8"))


@pytest.fixture
def fries() -> MenuItem:
    return MenuItem(item_id="FRIES", name="Fries", price_cents=300)


@pytest.fixture
def cheese() -> MenuItem:
    return MenuItem(item_id="CHEESE", name="Cheese", price_cents=50, is_modifier=True)


@pytest.fixture
def member() -> LoyaltyProfile:
    return LoyaltyProfile(customer_id="C-7", first_name="Ana", last_name="Lopez", phone="5551234567")
