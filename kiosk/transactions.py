"""Immutable transaction records frozen from the cart at submission time."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from kiosk.config import DEFAULT_CASHIER_ID, DEFAULT_ORDER_TYPE, DEFAULT_STATION_ID, INVOICE_SHORT_CODE_PREFIX
from kiosk.models import CartLine, CustomerIdentity, PaymentMethod
from kiosk.money import cart_grand_total, cart_subtotal, cart_tax_total, cents_to_dollars, line_price, line_tax, to_cents

ITEM_TYPE_MAIN = "ITEM"
ITEM_TYPE_MODIFIER = "MODIFIER"

_PAID_BY = {PaymentMethod.CARD: "Card", PaymentMethod.GIFT_CARD: "GiftCard"}


@dataclass(frozen=True)
class PaymentDetails:
    """What the payment step learned about an approved payment."""

    method: PaymentMethod
    approved_amount_cents: int | None = None
    card_number: str | None = None
    card_type: str | None = None
    card_holder: str | None = None
    retref: str | None = None
    entry_method: str | None = None
    account_type: str | None = None
    aid: str | None = None
    host_ref_num: str | None = None
    device_org_ref_num: str | None = None
    gift_card_number: str | None = None
    gift_card_new_balance_cents: int | None = None


@dataclass(frozen=True)
class TransactionLine:
    line_key: str
    item_id: str
    name: str
    item_type: str
    unit_price_cents: int
    quantity: int
    tax_cents: int
    amount_cents: int
    taxable: bool
    order_index: int


@dataclass(frozen=True)
class TransactionRecord:
    """A submitted order. Only ``uploaded`` ever changes after creation."""

    invoice_id: int
    short_code: str
    subtotal_cents: int
    tax_cents: int
    grand_total_cents: int
    created_at: datetime
    payment: PaymentDetails
    lines: tuple[TransactionLine, ...] = field(default_factory=tuple)
    customer_id: str | None = None
    phone: str | None = None
    customer_name: str | None = None
    station_id: str = DEFAULT_STATION_ID
    cashier_id: str = DEFAULT_CASHIER_ID
    order_type: str = DEFAULT_ORDER_TYPE
    invoice_unique_id: str | None = None
    uploaded: bool = False

    def mark_uploaded(self) -> TransactionRecord:
        return replace(self, uploaded=True)

    def to_payload(self) -> dict[str, Any]:
        """Backend transaction document (``date``/``time``/``transmain``/``transitems``)."""
        stamp = self.created_at.astimezone(timezone.utc)
        sale_time = stamp.isoformat()
        payment = self.payment
        transmain = {
            "invoiceId": self.invoice_id,
            "invoiceIdShortCode": self.short_code,
            "holdName": None,
            "transType": "SALE",
            "subtotal": cents_to_dollars(self.subtotal_cents),
            "tax1": cents_to_dollars(self.tax_cents),
            "grandTotal": cents_to_dollars(self.grand_total_cents),
            "saleDateTime": sale_time,
            "cashAmount": 0,
            "cardAmount": cents_to_dollars(self.grand_total_cents) if payment.method is PaymentMethod.CARD else 0,
            "cardNumber": payment.card_number,
            "stationId": self.station_id,
            "cashierId": self.cashier_id,
            "cashChangeAmount": 0,
            "paidby": _PAID_BY[payment.method],
            "retref": payment.retref,
            "cardType": payment.card_type,
            "cardHolder": payment.card_holder,
            "invoiceDiscount": 0,
            "phoneNo": self.phone,
            "entryMethod": payment.entry_method,
            "accountType": payment.account_type,
            "aid": payment.aid,
            "hostRefNum": payment.host_ref_num,
            "deviceOrgRefNum": payment.device_org_ref_num,
            "customerId": self.customer_id,
            "tipAmount": 0,
            "giftCardNumber": payment.gift_card_number,
            "customerName": self.customer_name,
            "invoiceUniqueId": self.invoice_unique_id,
            "orderType": self.order_type,
            "isUploaded": self.uploaded,
        }
        transitems = [
            {
                "idkey": line.line_key,
                "id": None,
                "transMainId": self.invoice_id,
                "itemId": line.item_id,
                "itemType": line.item_type,
                "itemName": line.name,
                "itemPrice": cents_to_dollars(line.unit_price_cents),
                "qty": line.quantity,
                "tax1": cents_to_dollars(line.tax_cents),
                "amount": cents_to_dollars(line.amount_cents),
                "actualPrice": cents_to_dollars(line.unit_price_cents),
                "discount": 0,
                "credits": 0,
                "orderId": line.order_index,
                "saleDateTime": sale_time,
                "tax1Status": "OK" if line.taxable else "",
            }
            for line in self.lines
        ]
        return {
            "date": stamp.date().isoformat(),
            "time": stamp.strftime("%H:%M:%S"),
            "transmain": transmain,
            "transitems": transitems,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TransactionRecord:
        main = payload["transmain"]
        paid_by = {label: method for method, label in _PAID_BY.items()}
        payment = PaymentDetails(
            method=paid_by.get(main.get("paidby"), PaymentMethod.CARD),
            card_number=main.get("cardNumber"),
            card_type=main.get("cardType"),
            card_holder=main.get("cardHolder"),
            retref=main.get("retref"),
            entry_method=main.get("entryMethod"),
            account_type=main.get("accountType"),
            aid=main.get("aid"),
            host_ref_num=main.get("hostRefNum"),
            device_org_ref_num=main.get("deviceOrgRefNum"),
            gift_card_number=main.get("giftCardNumber"),
        )
        lines = tuple(
            TransactionLine(
                line_key=str(row["idkey"]),
                item_id=str(row.get("itemId") or ""),
                name=str(row.get("itemName") or ""),
                item_type=str(row.get("itemType") or ITEM_TYPE_MAIN),
                unit_price_cents=to_cents(row.get("itemPrice")) or 0,
                quantity=int(row.get("qty") or 0),
                tax_cents=to_cents(row.get("tax1")) or 0,
                amount_cents=to_cents(row.get("amount")) or 0,
                taxable=row.get("tax1Status") == "OK",
                order_index=int(row.get("orderId") or 0),
            )
            for row in payload.get("transitems") or []
        )
        return cls(
            invoice_id=int(main["invoiceId"]),
            short_code=str(main.get("invoiceIdShortCode") or short_code_for(int(main["invoiceId"]))),
            subtotal_cents=to_cents(main.get("subtotal")) or 0,
            tax_cents=to_cents(main.get("tax1")) or 0,
            grand_total_cents=to_cents(main.get("grandTotal")) or 0,
            created_at=datetime.fromisoformat(main["saleDateTime"]),
            payment=payment,
            lines=lines,
            customer_id=main.get("customerId"),
            phone=main.get("phoneNo"),
            customer_name=main.get("customerName"),
            station_id=main.get("stationId") or DEFAULT_STATION_ID,
            cashier_id=main.get("cashierId") or DEFAULT_CASHIER_ID,
            order_type=main.get("orderType") or DEFAULT_ORDER_TYPE,
            invoice_unique_id=main.get("invoiceUniqueId"),
            uploaded=bool(main.get("isUploaded")),
        )


def short_code_for(invoice_id: int) -> str:
    return f"{INVOICE_SHORT_CODE_PREFIX}{str(invoice_id)[-4:]}"


def _flatten_lines(cart: Iterable[CartLine], key_factory: Callable[[], str]) -> tuple[TransactionLine, ...]:
    flattened: list[TransactionLine] = []
    for idx, line in enumerate(cart, start=1):
        price = line_price(line)
        flattened.append(
            TransactionLine(
                line_key=key_factory(),
                item_id=line.item.item_id,
                name=line.item.name,
                item_type=ITEM_TYPE_MAIN,
                unit_price_cents=price,
                quantity=line.quantity,
                tax_cents=line_tax(line),
                amount_cents=price * line.quantity,
                taxable=line.item.taxable,
                order_index=idx,
            )
        )
        for modifier in line.modifiers:
            mod_price = line_price(modifier)
            flattened.append(
                TransactionLine(
                    line_key=key_factory(),
                    item_id=modifier.item.item_id,
                    name=modifier.item.name,
                    item_type=ITEM_TYPE_MODIFIER,
                    unit_price_cents=mod_price,
                    quantity=modifier.quantity,
                    tax_cents=0,
                    amount_cents=mod_price * modifier.quantity,
                    taxable=modifier.item.taxable,
                    order_index=idx,
                )
            )
    return tuple(flattened)


def freeze_transaction(
    invoice_id: int,
    cart: Iterable[CartLine],
    customer: CustomerIdentity,
    customer_name: str,
    payment: PaymentDetails,
    *,
    key_factory: Callable[[], str],
    station_id: str = DEFAULT_STATION_ID,
    cashier_id: str = DEFAULT_CASHIER_ID,
    now: datetime | None = None,
) -> TransactionRecord:
    """Snapshot the cart into a record; totals are recomputed here, never reused."""
    lines = tuple(cart)
    profile = customer.profile
    return TransactionRecord(
        invoice_id=invoice_id,
        short_code=short_code_for(invoice_id),
        subtotal_cents=cart_subtotal(lines),
        tax_cents=cart_tax_total(lines),
        grand_total_cents=cart_grand_total(lines),
        created_at=now or datetime.now(timezone.utc),
        payment=payment,
        lines=_flatten_lines(lines, key_factory),
        customer_id=profile.customer_id if profile else None,
        phone=profile.phone if profile else None,
        customer_name=customer_name or None,
        station_id=station_id,
        cashier_id=cashier_id,
        invoice_unique_id=key_factory(),
    )
