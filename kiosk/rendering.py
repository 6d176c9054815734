"""Rich text renderings of the cart and receipts for operator consoles."""

from __future__ import annotations

from rich.text import Text

from kiosk.models import CartLine
from kiosk.money import cart_grand_total, cart_subtotal, cart_tax_total, format_currency, line_price, line_total
from kiosk.receipt import ReceiptLine, receipt_lines, render_plain
from kiosk.transactions import TransactionRecord

TAXABLE_BADGE_STYLE = "bold #0b1f0f on #5fbf72"


def format_cart_line(line: CartLine) -> Text:
    """Render a cart line with quantity, a taxable badge, and indented modifiers."""
    text = Text()
    text.append(f"{line.quantity} x ")
    text.append(line.item.name, style="bold")
    if line.item.taxable:
        text.append(" ")
        text.append("T", style=TAXABLE_BADGE_STYLE)
    text.append(f"  {format_currency(line_total(line))}")
    for modifier in line.modifiers:
        text.append("\n    + ")
        text.append(modifier.item.name, style="dim")
        price = line_price(modifier)
        if price:
            text.append(f" {format_currency(price * modifier.quantity)}", style="dim")
    return text


def format_cart(lines: tuple[CartLine, ...]) -> Text:
    text = Text()
    if not lines:
        text.append("(cart is empty)", style="dim")
        return text
    for idx, line in enumerate(lines):
        if idx > 0:
            text.append("\n")
        text.append_text(format_cart_line(line))
    text.append("\n")
    text.append(f"\nSubtotal {format_currency(cart_subtotal(lines))}")
    text.append(f"\nTax      {format_currency(cart_tax_total(lines))}")
    text.append(f"\nTotal    {format_currency(cart_grand_total(lines))}", style="bold")
    return text


def format_receipt_preview(record: TransactionRecord) -> Text:
    """Receipt as it will print, with bold lines emphasized."""
    lines: list[ReceiptLine] = receipt_lines(record)
    text = Text()
    for idx, line in enumerate(lines):
        if idx > 0:
            text.append("\n")
        text.append(render_plain([line]), style="bold" if line.bold else "")
    return text
