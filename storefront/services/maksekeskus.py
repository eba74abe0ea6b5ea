"""
Thin Maksekeskus REST client (no SDK dependency).

Payment methods use the shop id + publishable key; transaction creation uses
the shop id + secret key.  Both are HTTP Basic auth.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from storefront.config import Settings
from storefront.errors import UpstreamError
from storefront.models import Order
from storefront.schemas import MerchantData, PaymentMethodOut

logger = logging.getLogger(__name__)

# Served when the methods endpoint cannot be reached
DEFAULT_BANKLINKS: List[PaymentMethodOut] = [
    PaymentMethodOut(method="swedbank", name="Swedbank", countries=["ee"], min_amount=0.01, max_amount=15000),
    PaymentMethodOut(method="seb", name="SEB", countries=["ee"], min_amount=0.01, max_amount=15000),
    PaymentMethodOut(method="lhv", name="LHV Pank", countries=["ee"], min_amount=0.01, max_amount=15000),
    PaymentMethodOut(method="coop", name="Coop Pank", countries=["ee"], min_amount=0.01, max_amount=15000),
    PaymentMethodOut(method="luminor", name="Luminor", countries=["ee"], min_amount=0.01, max_amount=15000),
]


@dataclass(frozen=True)
class CreatedTransaction:
    transaction_id: str
    payment_url: str


def filter_methods(
    methods: List[PaymentMethodOut], amount: float, country: str = "ee"
) -> List[PaymentMethodOut]:
    country = country.lower()
    return [
        m for m in methods
        if country in [c.lower() for c in m.countries]
        and m.min_amount <= amount <= m.max_amount
    ]


def build_reference(prefix: str, order_id: str, now: Optional[float] = None) -> str:
    """PREFIX + order id fragment + last 6 digits of the unix time, max 20 chars."""
    stamp = str(int(now if now is not None else time.time()))[-6:]
    fragment = order_id.replace("-", "")[:8]
    return f"{prefix}{fragment}{stamp}"[:20]


class MaksekeskusClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._base = settings.maksekeskus_api_base
        self._timeout = httpx.Timeout(settings.maksekeskus_timeout_seconds)
        self._transport = transport

    def _client(self, secret: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=httpx.BasicAuth(self.settings.maksekeskus_shop_id, secret),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_payment_methods(self, amount: float, country: str = "ee") -> List[PaymentMethodOut]:
        methods: List[PaymentMethodOut]
        try:
            async with self._client(self.settings.maksekeskus_api_open_key) as client:
                resp = await client.get(
                    f"{self._base}/methods",
                    params={"amount": f"{amount:.2f}", "currency": "EUR", "country": country},
                )
                resp.raise_for_status()
                methods = [
                    PaymentMethodOut(
                        method=bank["name"],
                        name=bank.get("display_name") or bank.get("channel") or bank["name"],
                        countries=bank.get("countries") or [country],
                        min_amount=float(bank.get("min_amount") or 0),
                        max_amount=float(bank.get("max_amount") or 1_000_000),
                    )
                    for bank in resp.json().get("banklinks", [])
                ]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("Maksekeskus methods unavailable, using defaults: %s", exc)
            methods = DEFAULT_BANKLINKS

        available = filter_methods(methods, amount, country)
        logger.info("Retrieved %d banklink payment methods for %.2f", len(available), amount)
        return available

    async def create_transaction(
        self,
        order: Order,
        payment_method: str,
        customer_ip: str = "127.0.0.1",
    ) -> CreatedTransaction:
        merchant_data = MerchantData(order_id=order.id, customer_email=order.customer_email)
        site = self.settings.site_url.rstrip("/")
        body: Dict[str, Any] = {
            "transaction": {
                "amount": str(Decimal(order.total_amount).quantize(Decimal("0.01"))),
                "currency": order.currency,
                "reference": build_reference(
                    self.settings.maksekeskus_reference_prefix, order.id
                ),
                "merchant_data": merchant_data.model_dump_json(),
                "return_url": {"url": f"{site}/makse/korras", "method": "POST"},
                "cancel_url": {"url": f"{site}/makse/katkestatud", "method": "POST"},
                "notification_url": {
                    "url": f"{site}/api/maksekeskus/notification",
                    "method": "POST",
                },
            },
            "customer": {
                "email": order.customer_email,
                "name": order.customer_name,
                "ip": customer_ip,
                "country": "ee",
                "locale": "et",
            },
        }

        try:
            async with self._client(self.settings.maksekeskus_api_secret_key) as client:
                resp = await client.post(f"{self._base}/transactions", json=body)
        except httpx.HTTPError as exc:
            logger.error("Maksekeskus transaction request failed for order %s: %s", order.id, exc)
            raise UpstreamError(f"Payment provider unreachable: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Maksekeskus API error order=%s status=%d body=%s",
                order.id, resp.status_code, resp.text[:300],
            )
            raise UpstreamError(f"Payment provider error ({resp.status_code})")

        data = resp.json()
        payment_url = _pick_payment_url(data.get("payment_methods") or {}, payment_method)
        if not payment_url:
            raise UpstreamError("Selected payment method not available")

        logger.info("Created transaction %s for order %s", data.get("id"), order.id)
        return CreatedTransaction(transaction_id=str(data["id"]), payment_url=payment_url)


def _pick_payment_url(methods: Dict[str, Any], payment_method: str) -> Optional[str]:
    for bank in methods.get("banklinks") or []:
        if payment_method in (bank.get("name"), bank.get("channel")):
            return bank.get("url")
    for other in methods.get("other") or []:
        if other.get("name") == "redirect":
            return other.get("url")
    return None
