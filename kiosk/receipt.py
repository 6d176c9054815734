"""Text layout for customer receipts and kitchen tickets."""

from __future__ import annotations

from dataclasses import dataclass

from kiosk.config import RECEIPT_LINE_WIDTH
from kiosk.transactions import TransactionRecord

ITEM_COLUMN_WIDTH = 24
QTY_COLUMN_WIDTH = 4
PRICE_COLUMN_WIDTH = 8
RULE = "-" * RECEIPT_LINE_WIDTH
COLUMN_HEADER = "ITEM                     QTY    PRICE"


@dataclass(frozen=True)
class ReceiptLine:
    text: str
    align: str = "left"
    bold: bool = False
    double: bool = False


def _amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) // 100}.{abs(cents) % 100:02d}"


def format_item_row(name: str, quantity: int, amount_cents: int) -> str:
    """One table row: name padded to 24, qty right-aligned in 4, price in 8."""
    return f"{name.ljust(ITEM_COLUMN_WIDTH)}{str(quantity).rjust(QTY_COLUMN_WIDTH)}{_amount(amount_cents).rjust(PRICE_COLUMN_WIDTH)}"


def receipt_lines(record: TransactionRecord) -> list[ReceiptLine]:
    payload = record.to_payload()
    lines = [
        ReceiptLine("RECEIPT", align="center", bold=True, double=True),
        ReceiptLine(f"Invoice: {record.invoice_id}", align="center"),
        ReceiptLine(f"Date: {payload['date']} {payload['time']}", align="center"),
        ReceiptLine(""),
        ReceiptLine(COLUMN_HEADER),
        ReceiptLine(RULE),
    ]
    lines.extend(ReceiptLine(format_item_row(row.name, row.quantity, row.amount_cents)) for row in record.lines)
    lines.extend(
        [
            ReceiptLine(RULE),
            ReceiptLine(f"SUBTOTAL: {_amount(record.subtotal_cents)}", align="right"),
            ReceiptLine(f"TAX: {_amount(record.tax_cents)}", align="right"),
            ReceiptLine(f"TOTAL: {_amount(record.grand_total_cents)}", align="right", bold=True),
            ReceiptLine(""),
            ReceiptLine("THANK YOU!", align="center"),
        ]
    )
    return lines


def kitchen_ticket_lines(record: TransactionRecord) -> list[ReceiptLine]:
    lines = [
        ReceiptLine("KITCHEN TICKET", align="center", bold=True, double=True),
        ReceiptLine(f"Order: {record.invoice_id}", align="center", bold=True, double=True),
        ReceiptLine(""),
    ]
    lines.extend(ReceiptLine(f"{row.quantity} x {row.name}") for row in record.lines)
    return lines


def render_plain(lines: list[ReceiptLine], width: int = RECEIPT_LINE_WIDTH) -> str:
    """Plain-text preview honoring alignment."""
    out = []
    for line in lines:
        if line.align == "center":
            out.append(line.text.center(width).rstrip())
        elif line.align == "right":
            out.append(line.text.rjust(width))
        else:
            out.append(line.text)
    return "\n".join(out)
