"""ESC/POS receipt printer backed by python-escpos."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from kiosk.config import (
    PRINTER_FONT_PATH,
    PRINTER_FONT_SIZE,
    PRINTER_USB_PRODUCT_ID,
    PRINTER_USB_VENDOR_ID,
    PRINTER_WIDTH_PX,
)
from kiosk.receipt import ReceiptLine, kitchen_ticket_lines, receipt_lines
from kiosk.settings import KioskSettings
from kiosk.transactions import TransactionRecord

logger = logging.getLogger(__name__)

_HEADER_RIGHT_GUTTER_PX = 8
_HEADER_TOP_PADDING_PX = 4
_HEADER_BOTTOM_PADDING_PX = 12
_NETWORK_DEFAULT_PORT = 9100
_SERIAL_DEFAULT_DEVICE = "/dev/ttyUSB0"
_FONT_OVERRIDE_ENV = "KIOSK_PRINTER_FONT_PATH"
_LINUX_FONT_FALLBACKS = (
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/liberation/LiberationSans-Regular.ttf",
)


def resolve_printer_font_path() -> str | None:
    """
    Resolve a TrueType font for the order code header.

    Resolution order:
    1. KIOSK_PRINTER_FONT_PATH (if set)
    2. PRINTER_FONT_PATH
    3. Known Linux fallbacks
    """
    env_override = os.environ.get(_FONT_OVERRIDE_ENV, "").strip()
    candidates: list[str] = []
    if env_override:
        candidates.append(env_override)
    candidates.append(PRINTER_FONT_PATH)
    candidates.extend(_LINUX_FONT_FALLBACKS)

    seen: set[str] = set()
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        if Path(candidate).is_file():
            return candidate
    return None


def load_header_font(size: int = PRINTER_FONT_SIZE) -> object:
    from PIL import ImageFont

    font_path = resolve_printer_font_path()
    if font_path is None:
        logger.warning("printer_font_missing fallback=default env=%s", _FONT_OVERRIDE_ENV)
        return ImageFont.load_default(size=size)
    return ImageFont.truetype(font_path, size)


def _parse_usb_address(address: str) -> tuple[int, int]:
    if ":" not in address:
        return (PRINTER_USB_VENDOR_ID, PRINTER_USB_PRODUCT_ID)
    vendor, product = address.split(":", 1)
    return (int(vendor, 16), int(product, 16))


def open_printer(settings: KioskSettings) -> object:
    """Connect to the printer named by ``printer_type``/``printer_address``."""
    from escpos.printer import Network, Serial, Usb

    address = settings.printer_address.strip()
    if settings.printer_type == "network":
        host, _, port = address.partition(":")
        return Network(host, port=int(port) if port else _NETWORK_DEFAULT_PORT)
    if settings.printer_type == "serial":
        return Serial(devfile=address or _SERIAL_DEFAULT_DEVICE)
    vendor_id, product_id = _parse_usb_address(address)
    return Usb(vendor_id, product_id)


def check_printer_dependencies(settings: KioskSettings) -> tuple[bool, str]:
    """Check whether the configured printer can be opened."""
    try:
        printer = open_printer(settings)
        printer.close()
    except Exception as exc:
        return (False, f"Printer unavailable: {exc}")
    return (True, "Printer ready")


def render_order_code_header(order_code: str, font: object) -> object:
    """Large right-aligned order code so staff can call the order."""
    from PIL import Image, ImageDraw

    probe = Image.new("1", (1, 1), color=1)
    probe_draw = ImageDraw.Draw(probe)
    bbox = probe_draw.textbbox((0, 0), order_code, font=font)
    text_width = bbox[2] - bbox[0]
    text_height = bbox[3] - bbox[1]
    canvas_height = max(26, text_height + _HEADER_TOP_PADDING_PX + _HEADER_BOTTOM_PADDING_PX)

    img = Image.new("1", (PRINTER_WIDTH_PX, canvas_height), color=1)
    draw = ImageDraw.Draw(img)
    x = PRINTER_WIDTH_PX - _HEADER_RIGHT_GUTTER_PX - text_width - bbox[0]
    # Offset by bbox top so tall glyphs are not clipped.
    y = _HEADER_TOP_PADDING_PX - bbox[1]
    draw.text((x, y), order_code, font=font, fill=0)
    return img


def _emit_lines(printer: object, lines: list[ReceiptLine]) -> None:
    for line in lines:
        printer.set(align=line.align, bold=line.bold, double_width=line.double, double_height=line.double)
        printer.text(f"{line.text}\n")
    printer.set(align="left", bold=False, double_width=False, double_height=False)


class EscposReceiptPrinter:
    """``ReceiptPrinter`` that opens a fresh connection for each ticket."""

    def __init__(
        self,
        settings: KioskSettings,
        printer_factory: Callable[[KioskSettings], object] = open_printer,
        header_font: object | None = None,
    ) -> None:
        self.settings = settings
        self.printer_factory = printer_factory
        self._header_font = header_font

    def _font(self) -> object:
        if self._header_font is None:
            self._header_font = load_header_font()
        return self._header_font

    def _print(self, record: TransactionRecord, lines: list[ReceiptLine], with_header: bool) -> None:
        printer = self.printer_factory(self.settings)
        try:
            if with_header:
                printer.image(render_order_code_header(record.short_code, self._font()))
            _emit_lines(printer, lines)
            printer.text("\n\n")
            printer.cut()
        finally:
            printer.close()

    def print_receipt(self, record: TransactionRecord) -> None:
        self._print(record, receipt_lines(record), with_header=True)
        logger.info("receipt_printed invoice_id=%s", record.invoice_id)

    def print_kitchen_ticket(self, record: TransactionRecord) -> None:
        self._print(record, kitchen_ticket_lines(record), with_header=False)
        logger.info("kitchen_ticket_printed invoice_id=%s", record.invoice_id)
