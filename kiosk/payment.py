"""Payment step sequencing for card and gift-card checkout.

``PaymentFlow`` owns the current step, the inline error message, and the
in-flight charge task. It never touches the cart or customer identity; a
successful payment is handed to ``submit`` and the flow only reaches
``success`` when that submission reports True.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
import time
from typing import Awaitable, Callable

from kiosk.capabilities import (
    Backend,
    CardEntryMethod,
    ChargeResult,
    GiftCardBalance,
    GiftCardRedemption,
    PaymentTerminal,
    entry_mode_for,
    guarded,
)
from kiosk.config import MIN_GIFT_CARD_TOKEN_LENGTH
from kiosk.errors import PaymentStateError, ValidationError
from kiosk.inactivity import InactivityTimer
from kiosk.models import PaymentMethod
from kiosk.money import format_currency
from kiosk.transactions import PaymentDetails

logger = logging.getLogger(__name__)

TRANSACTION_TYPE_SALE = "SALE"

DECLINED_MESSAGE = "Payment Declined"
CARD_SUBMIT_FAILED_MESSAGE = "Order submission failed. Please try again."
GIFT_CARD_SUBMIT_FAILED_MESSAGE = "Order submission failed after payment."
GIFT_CARD_INVALID_MESSAGE = "Please enter a valid gift card number"
GIFT_CARD_UNVERIFIED_MESSAGE = "Unable to verify gift card. Please check the number and try again."
GIFT_CARD_CHECK_FAILED_MESSAGE = "Failed to check gift card balance."
GIFT_CARD_INSUFFICIENT_MESSAGE = "Insufficient gift card balance."
GIFT_CARD_REDEEM_FAILED_MESSAGE = "Gift card redemption failed."
PAYMENT_PROCESSING_FAILED_MESSAGE = "Payment processing failed."

_TOKEN_NOISE = re.compile(r"[\s-]+")
_BALANCE_UNAVAILABLE = GiftCardBalance(ok=False, balance_cents=0, status_code="ERROR")


class PaymentStep(str, enum.Enum):
    SELECT = "select"
    CARD_METHOD_SELECT = "card_method_select"
    CARD_PROCESSING = "card_processing"
    GIFT_CARD_ENTRY = "gift_card_entry"
    GIFT_CARD_PROCESSING = "gift_card_processing"
    SUCCESS = "success"


_PROCESSING_STEPS = {PaymentStep.CARD_PROCESSING, PaymentStep.GIFT_CARD_PROCESSING}


def normalize_gift_card_token(token: str) -> str:
    """Strip spaces and dashes; reject tokens shorter than the minimum length."""
    cleaned = _TOKEN_NOISE.sub("", token or "")
    if len(cleaned) < MIN_GIFT_CARD_TOKEN_LENGTH:
        raise ValidationError(GIFT_CARD_INVALID_MESSAGE)
    return cleaned


def mask_card_number(token: str) -> str:
    return f"****{token[-4:]}"


def card_payment_details(
    result: ChargeResult,
    reference: str,
    method: CardEntryMethod | None,
    amount_cents: int,
    now_ms: int,
) -> PaymentDetails:
    """Payment fields recorded for an approved card charge."""
    return PaymentDetails(
        method=PaymentMethod.CARD,
        approved_amount_cents=result.approved_amount_cents or amount_cents,
        card_number=result.masked_account or "****4242",
        card_type=result.card_type or "CARD",
        card_holder="CUSTOMER",
        retref=result.host_reference or reference,
        entry_method=result.entry_mode or (method or CardEntryMethod.ALL).value.upper(),
        account_type="CREDIT",
        host_ref_num=result.auth_code or "",
        device_org_ref_num=f"D{now_ms}",
    )


class PaymentFlow:
    def __init__(
        self,
        terminal: PaymentTerminal,
        backend: Backend,
        amount_due: Callable[[], int],
        submit: Callable[[PaymentDetails], Awaitable[bool]],
        timer: InactivityTimer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.terminal = terminal
        self.backend = backend
        self.amount_due = amount_due
        self.submit = submit
        self.timer = timer
        self.clock = clock

        self.step = PaymentStep.SELECT
        self.error: str | None = None
        self.selected_method: CardEntryMethod | None = None
        self.gift_card_token = ""
        self.gift_card_balance_cents: int | None = None
        self._charge_task: asyncio.Task[ChargeResult] | None = None
        self._cancel_requested = False
        self._last_reference_ms = 0

    @property
    def processing(self) -> bool:
        return self.step in _PROCESSING_STEPS

    @property
    def can_redeem(self) -> bool:
        return self.gift_card_balance_cents is not None and self.gift_card_balance_cents >= self.amount_due()

    def _require(self, *steps: PaymentStep) -> None:
        if self.step not in steps:
            raise PaymentStateError(f"not allowed from step {self.step.value}")

    def _move(self, step: PaymentStep, error: str | None = None) -> None:
        logger.debug("payment_step from=%s to=%s error=%r", self.step.value, step.value, error)
        self.step = step
        self.error = error

    def _pause_timer(self) -> None:
        if self.timer is not None:
            self.timer.disarm()

    def _resume_timer(self) -> None:
        if self.timer is not None and self.step is not PaymentStep.SUCCESS:
            self.timer.arm()

    def _next_reference(self) -> str:
        now_ms = int(self.clock() * 1000)
        if now_ms <= self._last_reference_ms:
            now_ms = self._last_reference_ms + 1
        self._last_reference_ms = now_ms
        return f"REF{now_ms}"

    # Navigation

    def choose_card(self) -> None:
        self._require(PaymentStep.SELECT)
        self._move(PaymentStep.CARD_METHOD_SELECT)

    def choose_gift_card(self) -> None:
        self._require(PaymentStep.SELECT)
        self.gift_card_token = ""
        self.gift_card_balance_cents = None
        self._move(PaymentStep.GIFT_CARD_ENTRY)

    def back(self) -> None:
        """Leave a method sub-step for method selection."""
        self._require(PaymentStep.CARD_METHOD_SELECT, PaymentStep.GIFT_CARD_ENTRY)
        self.gift_card_token = ""
        self.gift_card_balance_cents = None
        self._move(PaymentStep.SELECT)

    # Card

    async def pay_by_card(self, method: CardEntryMethod | None = None) -> bool:
        """Charge the grand total on the terminal and submit the order on approval."""
        self._require(PaymentStep.CARD_METHOD_SELECT)
        amount = self.amount_due()
        reference = self._next_reference()
        self.selected_method = method
        self._cancel_requested = False
        self._move(PaymentStep.CARD_PROCESSING)
        self._pause_timer()
        logger.info("card_charge_started amount_cents=%s method=%s reference=%s", amount, method, reference)
        try:
            self._charge_task = asyncio.create_task(
                self.terminal.charge(TRANSACTION_TYPE_SALE, amount, entry_mode_for(method), reference)
            )
            try:
                result = await self._charge_task
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    raise
                logger.info("card_charge_cancelled reference=%s", reference)
                return False
            except Exception as exc:
                logger.exception("card_charge_failed reference=%s", reference)
                result = ChargeResult.failure(str(exc) or "Payment failed. Please try again.")
            finally:
                self._charge_task = None

            if not result.approved:
                logger.info(
                    "card_charge_declined reference=%s code=%s message=%r",
                    reference,
                    result.response_code,
                    result.response_message,
                )
                self._move(PaymentStep.CARD_METHOD_SELECT, result.response_message or DECLINED_MESSAGE)
                return False

            details = card_payment_details(result, reference, method, amount, int(self.clock() * 1000))
            if await guarded("submit_order", lambda: self.submit(details), False):
                self._move(PaymentStep.SUCCESS)
                return True
            self._move(PaymentStep.CARD_METHOD_SELECT, CARD_SUBMIT_FAILED_MESSAGE)
            return False
        finally:
            self._resume_timer()

    async def cancel(self) -> None:
        """Abandon the in-flight charge. Local state always returns to ``select``."""
        self._require(PaymentStep.CARD_PROCESSING)
        self._cancel_requested = True
        task = self._charge_task
        if task is not None and not task.done():
            task.cancel()
        self._move(PaymentStep.SELECT)
        await guarded("terminal_cancel", self.terminal.cancel, None)

    async def close_batch(self) -> ChargeResult:
        result = await guarded(
            "terminal_close_batch", self.terminal.close_batch, ChargeResult.failure("Batch close failed.")
        )
        logger.info("terminal_batch_closed approved=%s message=%r", result.approved, result.response_message)
        return result

    # Gift card

    def enter_gift_card(self, token: str) -> None:
        self._require(PaymentStep.GIFT_CARD_ENTRY)
        self.gift_card_token = token
        self.gift_card_balance_cents = None
        self.error = None

    async def check_gift_card_balance(self) -> bool:
        """Look up the balance; True when it covers the grand total."""
        self._require(PaymentStep.GIFT_CARD_ENTRY)
        try:
            token = normalize_gift_card_token(self.gift_card_token)
        except ValidationError as exc:
            self.error = str(exc)
            return False
        self.gift_card_token = token
        self.error = None
        result = await guarded(
            "gift_card_balance", lambda: self.backend.check_gift_card_balance(token), _BALANCE_UNAVAILABLE
        )
        if result is _BALANCE_UNAVAILABLE:
            self.error = GIFT_CARD_CHECK_FAILED_MESSAGE
            return False
        if result is None or not result.ok:
            self.error = GIFT_CARD_UNVERIFIED_MESSAGE
            return False

        self.gift_card_balance_cents = result.balance_cents
        total = self.amount_due()
        if result.balance_cents < total:
            self.error = (
                f"Gift card balance ({format_currency(result.balance_cents)}) is insufficient. "
                f"Total: {format_currency(total)}"
            )
            return False
        return True

    async def redeem_gift_card(self) -> bool:
        """Redeem exactly the grand total and submit the order on success."""
        self._require(PaymentStep.GIFT_CARD_ENTRY)
        if not self.can_redeem:
            self.error = GIFT_CARD_INSUFFICIENT_MESSAGE
            return False

        amount = self.amount_due()
        token = self.gift_card_token
        self._move(PaymentStep.GIFT_CARD_PROCESSING)
        self._pause_timer()
        try:
            result = await guarded(
                "gift_card_redeem",
                lambda: self.backend.redeem_gift_card(token, amount),
                GiftCardRedemption.failure(PAYMENT_PROCESSING_FAILED_MESSAGE),
            )
            if not result.ok:
                logger.info("gift_card_redeem_failed code=%s description=%r", result.status_code, result.description)
                self._move(PaymentStep.GIFT_CARD_ENTRY, result.description or GIFT_CARD_REDEEM_FAILED_MESSAGE)
                return False

            details = PaymentDetails(
                method=PaymentMethod.GIFT_CARD,
                approved_amount_cents=result.approved_cents or amount,
                gift_card_number=mask_card_number(token),
                host_ref_num=result.host_ref,
                gift_card_new_balance_cents=result.new_balance_cents,
            )
            if await guarded("submit_order", lambda: self.submit(details), False):
                self._move(PaymentStep.SUCCESS)
                return True
            self._move(PaymentStep.SELECT, GIFT_CARD_SUBMIT_FAILED_MESSAGE)
            return False
        finally:
            self._resume_timer()

    def reset(self) -> None:
        """Return to method selection for the next order."""
        self.selected_method = None
        self.gift_card_token = ""
        self.gift_card_balance_cents = None
        self._move(PaymentStep.SELECT)
