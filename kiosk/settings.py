"""Kiosk runtime settings persisted in the local store.

Settings are loaded once into a ``KioskSettings`` value that is handed to the
order, payment, and sync components. The settings screen changes them only
through ``commit_settings``.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

from kiosk.config import (
    CONNECTIVITY_PROBE_SECONDS,
    DEFAULT_CASHIER_ID,
    DEFAULT_DB_NAME,
    DEFAULT_SETTINGS_PIN,
    DEFAULT_STATION_ID,
    GIFT_CARD_SERVER_URL,
    INACTIVITY_TIMEOUT_SECONDS,
    LOYALTY_SERVER_URL,
    PAX_DEFAULT_PORT,
    POS_API_URL,
    SYNC_INTERVAL_SECONDS,
    TRANS_SERVER_URL,
)
from kiosk.models import KioskMode
from kiosk.persistence import KioskStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "kiosk_settings"
PRINTER_TYPES = ("usb", "network", "serial")


@dataclass(frozen=True)
class KioskSettings:
    api_base_url: str = POS_API_URL
    trans_server_url: str = TRANS_SERVER_URL
    loyalty_server_url: str = LOYALTY_SERVER_URL
    gift_card_server_url: str = GIFT_CARD_SERVER_URL
    trans_server_auth: str = ""
    gift_card_server_auth: str = ""
    gift_card_franchisee_id: str = ""
    pax_ip_address: str = "10.0.0.1"
    pax_port: int = PAX_DEFAULT_PORT
    printer_type: str = "usb"
    printer_address: str = ""
    kiosk_status: KioskMode = KioskMode.ACTIVE
    store_id: str = ""
    db_name: str = DEFAULT_DB_NAME
    settings_password: str = DEFAULT_SETTINGS_PIN
    station_id: str = DEFAULT_STATION_ID
    cashier_id: str = DEFAULT_CASHIER_ID
    inactivity_timeout_seconds: float = INACTIVITY_TIMEOUT_SECONDS
    sync_interval_seconds: float = SYNC_INTERVAL_SECONDS
    connectivity_probe_seconds: float = CONNECTIVITY_PROBE_SECONDS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kiosk_status"] = self.kiosk_status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> KioskSettings:
        """Build settings from a stored blob; unknown keys are ignored, missing ones defaulted."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "kiosk_status" in values:
            try:
                values["kiosk_status"] = KioskMode(values["kiosk_status"])
            except ValueError:
                logger.warning("settings_invalid_kiosk_status value=%r", values["kiosk_status"])
                values["kiosk_status"] = KioskMode.ACTIVE
        if "pax_port" in values:
            values["pax_port"] = int(values["pax_port"])
        return cls(**values)


def validate_settings(settings: KioskSettings) -> None:
    if settings.printer_type not in PRINTER_TYPES:
        raise ValueError(f"printer_type must be one of {', '.join(PRINTER_TYPES)}")
    if not (0 < settings.pax_port < 65536):
        raise ValueError("pax_port must be a valid TCP port")
    if not settings.settings_password.isdigit():
        raise ValueError("settings_password must be numeric")


def load_settings(store: KioskStore) -> KioskSettings:
    blob = store.load_setting(SETTINGS_KEY)
    if not blob:
        return KioskSettings()
    return KioskSettings.from_dict(blob)


def commit_settings(store: KioskStore, settings: KioskSettings) -> KioskSettings:
    """The single write path for settings."""
    validate_settings(settings)
    store.persist_setting(SETTINGS_KEY, settings.to_dict())
    logger.info(
        "settings_committed kiosk_status=%s store_id=%r db_name=%r",
        settings.kiosk_status.value,
        settings.store_id,
        settings.db_name,
    )
    return settings


def update_settings(store: KioskStore, settings: KioskSettings, **changes: Any) -> KioskSettings:
    return commit_settings(store, replace(settings, **changes))


def verify_settings_pin(settings: KioskSettings, pin: str) -> bool:
    """Check the PIN that guards the settings screen."""
    expected = settings.settings_password or DEFAULT_SETTINGS_PIN
    return hmac.compare_digest(pin.encode(), expected.encode())
