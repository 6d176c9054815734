"""HTTP client for the POS, transaction, loyalty, and gift-card servers."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Mapping

import httpx

from kiosk.capabilities import GiftCardBalance, GiftCardRedemption
from kiosk.config import HTTP_TIMEOUT_SECONDS
from kiosk.money import cents_to_dollars, to_cents
from kiosk.models import LoyaltyProfile
from kiosk.settings import KioskSettings
from kiosk.transactions import TransactionRecord

logger = logging.getLogger(__name__)

POS_DATA_PATH = "/POS"
TAX_RATE_PATH = "/TaxRate"
TRANSACTIONS_PATH = "/Transactions"
STATUS_PATH = "/Others/status"
LOYALTY_CUSTOMER_PATH = "/Customer"
GIFT_CARD_BALANCE_PATH = "/Transaction/balancecheck"
GIFT_CARD_REDEEM_PATH = "/Transaction/radeem"
GIFT_CARD_POS_REF = "PosP"

_GUID = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def franchisee_guid(store_id: str) -> str:
    """Gift-card franchisee id; non-GUID store ids are zero-padded into one."""
    if _GUID.match(store_id):
        return store_id
    return f"00000000-0000-0000-0000-{store_id.rjust(12, '0')}"


def parse_loyalty_profile(row: Mapping[str, Any]) -> LoyaltyProfile:
    points = row.get("loyaltyPoints")
    try:
        loyalty_points = int(float(points)) if points not in (None, "") else 0
    except (TypeError, ValueError):
        loyalty_points = 0
    return LoyaltyProfile(
        customer_id=str(row.get("id") or row.get("customerId") or ""),
        first_name=row.get("firstName"),
        last_name=row.get("lastName"),
        phone=row.get("phoneNo") or row.get("phone"),
        email=row.get("email"),
        tax_exempt=bool(row.get("taxExempt")),
        loyalty_points=loyalty_points,
        membership_card=row.get("membershipCard"),
    )


class BackendClient:
    """Async ``Backend`` over HTTP. Transport errors become ``None``/``False``/failed results."""

    def __init__(
        self,
        settings: KioskSettings,
        encrypt: Callable[[str], str],
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.settings = settings
        self.encrypt = encrypt
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _trans_headers(self, db_name: str | None = None) -> dict[str, str]:
        headers = {"Authorization": self.settings.trans_server_auth}
        if db_name is not None:
            headers["db"] = db_name
        return headers

    def _gift_card_headers(self) -> dict[str, str]:
        return {"Authorization": self.settings.gift_card_server_auth}

    async def is_online(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.settings.trans_server_url}{STATUS_PATH}", headers=self._trans_headers()
                )
        except httpx.HTTPError as exc:
            logger.debug("status_check_failed error=%s", exc)
            return False
        return response.status_code == 200

    async def fetch_menu(self, store_identifier: str) -> dict[str, Any] | None:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.settings.api_base_url}{POS_DATA_PATH}", headers={"db": store_identifier}
                )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("menu_fetch_failed db=%s error=%s", store_identifier, exc)
            return None

    async def fetch_tax_rates(self, store_identifier: str) -> list[dict[str, Any]]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.settings.api_base_url}{TAX_RATE_PATH}", headers={"db": store_identifier}
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("tax_rate_fetch_failed db=%s error=%s", store_identifier, exc)
            return []
        return data if isinstance(data, list) else [data]

    async def upload_transaction(self, record: TransactionRecord, store_identifier: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.settings.trans_server_url}{TRANSACTIONS_PATH}",
                    headers=self._trans_headers(store_identifier),
                    json=record.to_payload(),
                )
        except httpx.HTTPError as exc:
            logger.warning("transaction_upload_failed invoice_id=%s error=%s", record.invoice_id, exc)
            return False
        if response.status_code != 200:
            logger.warning(
                "transaction_upload_rejected invoice_id=%s status=%s", record.invoice_id, response.status_code
            )
            return False
        return True

    async def _search_loyalty(self, params: dict[str, str]) -> LoyaltyProfile | None:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.settings.loyalty_server_url}{LOYALTY_CUSTOMER_PATH}", params=params
                )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("loyalty_search_failed error=%s", exc)
            return None
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return parse_loyalty_profile(data)

    async def search_loyalty_by_phone(self, phone: str) -> LoyaltyProfile | None:
        return await self._search_loyalty({"phoneNo": phone})

    async def search_loyalty_by_token(self, token: str) -> LoyaltyProfile | None:
        return await self._search_loyalty({"membershipCard": token})

    async def check_gift_card_balance(self, token: str) -> GiftCardBalance | None:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.settings.gift_card_server_url}{GIFT_CARD_BALANCE_PATH}",
                    headers=self._gift_card_headers(),
                    json={"encrypted": self.encrypt(token)},
                )
            if response.status_code != 200:
                return GiftCardBalance(ok=False, balance_cents=0, status_code=str(response.status_code))
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("gift_card_balance_failed error=%s", exc)
            return None
        return GiftCardBalance(
            ok=data.get("status") is True,
            balance_cents=to_cents(data.get("balance")) or 0,
            status_code=str(data.get("statuscode") or "000000"),
            description=data.get("description") or "",
        )

    async def redeem_gift_card(self, token: str, amount_cents: int) -> GiftCardRedemption:
        body = {
            "encrypted": self.encrypt(token),
            "cardToken": "",
            "amount": cents_to_dollars(amount_cents),
            "franchiseeId": franchisee_guid(self.settings.gift_card_franchisee_id or self.settings.store_id),
            "posRef": GIFT_CARD_POS_REF,
            "acceptPartialAmount": True,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.settings.gift_card_server_url}{GIFT_CARD_REDEEM_PATH}",
                    headers=self._gift_card_headers(),
                    json=body,
                )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("gift_card_redeem_failed error=%s", exc)
            return GiftCardRedemption.failure(f"Exception: {exc}")
        if response.status_code != 200:
            return GiftCardRedemption.failure(
                data.get("message") or data.get("title") or "Redemption failed", str(response.status_code)
            )
        return GiftCardRedemption(
            ok=data.get("status") is True,
            status_code=str(data.get("statuscode") or "000000"),
            description=data.get("description") or "",
            host_ref=str(data.get("HostRef") or ""),
            approved_cents=to_cents(data.get("balance")) or 0,
            new_balance_cents=to_cents(data.get("newBalance")) or 0,
        )
