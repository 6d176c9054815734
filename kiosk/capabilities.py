"""Contracts for the collaborators the order engine drives.

Backend transport, the payment terminal, and the receipt printer are consumed
through these protocols. Loosely typed responses are turned into the result
types below once, at the boundary, so the rest of the engine never re-parses
raw maps.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, TypeVar

from kiosk.models import LoyaltyProfile
from kiosk.transactions import TransactionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPROVED_RESPONSE_CODE = "000000"


class EntryMode(enum.Flag):
    """Input methods the terminal accepts for one charge attempt."""

    MANUAL = enum.auto()
    SWIPE = enum.auto()
    CHIP = enum.auto()
    CONTACTLESS = enum.auto()
    SCAN = enum.auto()


ALL_ENTRY_MODES = EntryMode.MANUAL | EntryMode.SWIPE | EntryMode.CHIP | EntryMode.CONTACTLESS | EntryMode.SCAN


class CardEntryMethod(str, enum.Enum):
    QR = "qr"
    NFC = "nfc"
    SWIPE = "swipe"
    ALL = "all"


ENTRY_MODE_PRESETS: dict[CardEntryMethod, EntryMode] = {
    CardEntryMethod.QR: EntryMode.SCAN,
    CardEntryMethod.NFC: EntryMode.CONTACTLESS,
    CardEntryMethod.SWIPE: EntryMode.SWIPE | EntryMode.CHIP,
    CardEntryMethod.ALL: ALL_ENTRY_MODES,
}


def entry_mode_for(method: CardEntryMethod | None) -> EntryMode:
    if method is None:
        return ALL_ENTRY_MODES
    return ENTRY_MODE_PRESETS.get(method, ALL_ENTRY_MODES)


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a terminal operation."""

    approved: bool
    response_code: str
    response_message: str
    host_reference: str | None = None
    auth_code: str | None = None
    masked_account: str | None = None
    card_type: str | None = None
    entry_mode: str | None = None
    approved_amount_cents: int | None = None

    @classmethod
    def failure(cls, message: str, code: str = "ERROR") -> ChargeResult:
        return cls(approved=False, response_code=code, response_message=message)

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> ChargeResult:
        """Parse a terminal response document.

        When the top-level code and message are generic, the host response
        fields are used instead.
        """
        code = str(_first(data, "ResponseCode", "responseCode") or "ERROR")
        message = str(_first(data, "ResponseMessage", "responseMessage") or "Unknown Error")
        host = _first(data, "hostInformation", "HostInformation") or {}
        account = _first(data, "accountInformation", "AccountInformation") or {}
        amounts = _first(data, "amountInformation", "AmountInformation") or {}

        if code == "ERROR" and message == "Unknown Error":
            host_message = _first(host, "hostResponseMessage", "HostResponseMessage")
            if host_message:
                message = str(host_message)
                code = str(_first(host, "hostResponseCode", "HostResponseCode") or "DECLINED")

        approved_amount = _first(amounts, "approvedAmount", "ApprovedAmount")
        return cls(
            approved=code == APPROVED_RESPONSE_CODE,
            response_code=code,
            response_message=message,
            host_reference=_first(host, "hostReferenceNumber", "HostReferenceNumber"),
            auth_code=_first(host, "authCode", "AuthCode"),
            masked_account=_first(account, "account", "Account"),
            card_type=_first(account, "cardType", "CardType"),
            entry_mode=_first(account, "entryMode", "EntryMode"),
            approved_amount_cents=int(approved_amount) if approved_amount is not None else None,
        )


@dataclass(frozen=True)
class GiftCardBalance:
    ok: bool
    balance_cents: int
    status_code: str = "000000"
    description: str = ""


@dataclass(frozen=True)
class GiftCardRedemption:
    ok: bool
    status_code: str
    description: str = ""
    host_ref: str | None = None
    approved_cents: int = 0
    new_balance_cents: int = 0

    @classmethod
    def failure(cls, description: str, status_code: str = "999") -> GiftCardRedemption:
        return cls(ok=False, status_code=status_code, description=description)


class Backend(Protocol):
    async def fetch_menu(self, store_identifier: str) -> dict[str, Any] | None: ...

    async def fetch_tax_rates(self, store_identifier: str) -> list[dict[str, Any]]: ...

    async def upload_transaction(self, record: TransactionRecord, store_identifier: str) -> bool: ...

    async def search_loyalty_by_phone(self, phone: str) -> LoyaltyProfile | None: ...

    async def search_loyalty_by_token(self, token: str) -> LoyaltyProfile | None: ...

    async def check_gift_card_balance(self, token: str) -> GiftCardBalance | None: ...

    async def redeem_gift_card(self, token: str, amount_cents: int) -> GiftCardRedemption: ...

    async def is_online(self) -> bool: ...


class PaymentTerminal(Protocol):
    async def charge(
        self, transaction_type: str, amount_cents: int, entry_mode: EntryMode, reference: str
    ) -> ChargeResult: ...

    async def cancel(self) -> None: ...

    async def close_batch(self) -> ChargeResult: ...


class ReceiptPrinter(Protocol):
    def print_receipt(self, record: TransactionRecord) -> None: ...

    def print_kitchen_ticket(self, record: TransactionRecord) -> None: ...


async def guarded(operation: str, call: Callable[[], Awaitable[T]], fallback: T) -> T:
    """Await a capability call, converting any raised error into ``fallback``."""
    try:
        return await call()
    except Exception:
        logger.exception("capability_failed operation=%s", operation)
        return fallback
