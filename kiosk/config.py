"""Runtime configuration defaults for the kiosk order engine."""

from __future__ import annotations

import os

DB_PATH = os.environ.get("KIOSK_DB_PATH", "data/kiosk.db")
DEBUG_LOG_PATH = "/tmp/kiosk-debug.log"

# First invoice handed out is INVOICE_ID_FLOOR + 1.
INVOICE_ID_FLOOR = 1000
INVOICE_SHORT_CODE_PREFIX = "K"

DEFAULT_DB_NAME = "170"
DEFAULT_SETTINGS_PIN = "1234"
DEFAULT_STATION_ID = "KIOSK-01"
DEFAULT_CASHIER_ID = "KIOSK"
DEFAULT_ORDER_TYPE = "Take Away"

MIN_PHONE_DIGITS = 10
MIN_GIFT_CARD_TOKEN_LENGTH = 4
SETTINGS_PIN_LENGTH = 4

INACTIVITY_TIMEOUT_SECONDS = 120.0
SYNC_INTERVAL_SECONDS = 30.0
CONNECTIVITY_PROBE_SECONDS = 30.0
HTTP_TIMEOUT_SECONDS = 15.0

POS_API_URL = "https://api3.mypospointe.com:8843"
TRANS_SERVER_URL = "https://transserver2.mypospointe.com:9443"
LOYALTY_SERVER_URL = "https://pospointeloyalty.azurewebsites.net"
GIFT_CARD_SERVER_URL = "https://giftcard.myposerver.com"

PAX_DEFAULT_PORT = 10009

# Values copied from the receipt printer prototype.
PRINTER_USB_VENDOR_ID = 0x28E9
PRINTER_USB_PRODUCT_ID = 0x0289
PRINTER_WIDTH_PX = 384
PRINTER_FONT_SIZE = 68
PRINTER_FONT_PATH = "/System/Library/Fonts/SFNS.ttf"
RECEIPT_LINE_WIDTH = 38
