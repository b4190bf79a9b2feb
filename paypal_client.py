"""
PayPal REST client used by the order engine.

Talks to the v2 Checkout Orders API. Without credentials the client runs in
mock mode and returns synthetic successful results.
"""
import httpx
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import config

logger = logging.getLogger(__name__)


@dataclass
class PayPalOrderResult:
    is_success: bool
    paypal_order_id: Optional[str] = None
    approve_link: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PayPalCaptureResult:
    is_success: bool
    paypal_order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


def build_order_payload(
    reference: str, amount: Decimal, currency: str, return_url: str, cancel_url: str
) -> dict:
    """Request body for creating a PayPal order with CAPTURE intent."""
    return {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "reference_id": reference,
                "amount": {
                    "currency_code": currency,
                    "value": f"{Decimal(amount):.2f}",
                },
            }
        ],
        "application_context": {
            "return_url": return_url,
            "cancel_url": cancel_url,
        },
    }


def extract_approve_link(data: dict) -> Optional[str]:
    for link in data.get("links") or []:
        if isinstance(link, dict) and link.get("rel") == "approve":
            return link.get("href")
    return None


def extract_capture_id(data: dict) -> Optional[str]:
    units = data.get("purchase_units") or []
    if not units or not isinstance(units[0], dict):
        return None
    captures = (units[0].get("payments") or {}).get("captures") or []
    if captures and isinstance(captures[0], dict):
        return captures[0].get("id")
    return None


class PayPalClient:
    """
    Payment gateway backed by PayPal.

    ``transport`` is handed to ``httpx.AsyncClient`` and lets tests plug in
    an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        client_id: str = config.PAYPAL_CLIENT_ID,
        client_secret: str = config.PAYPAL_CLIENT_SECRET,
        base_url: str = config.PAYPAL_BASE_URL,
        return_url: str = config.PAYPAL_RETURN_URL,
        cancel_url: str = config.PAYPAL_CANCEL_URL,
        timeout: float = config.PAYPAL_TIMEOUT_SECONDS,
        use_sandbox: bool = config.PAYPAL_USE_SANDBOX,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.base_url = base_url.rstrip("/")
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.timeout = timeout
        self.use_sandbox = use_sandbox
        self._transport = transport

    @property
    def is_mock(self) -> bool:
        return not self.client_id.strip() or not self.client_secret.strip()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def get_access_token(self, client: httpx.AsyncClient) -> Optional[str]:
        """OAuth2 client-credentials token, or None when PayPal refuses."""
        try:
            response = await client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json", "Accept-Language": "en_US"},
            )
            response.raise_for_status()
            return response.json().get("access_token")
        except httpx.HTTPStatusError as e:
            logger.error(f"[PAYPAL] Token request failed: {e.response.status_code} - {e.response.text}")
            return None

    async def create_order(
        self, reference: str, amount: Decimal, currency: str = config.PAYPAL_CURRENCY
    ) -> PayPalOrderResult:
        """Create a PayPal order the customer approves through ``approve_link``."""
        if self.is_mock:
            paypal_order_id = f"MOCK-{uuid.uuid4()}"
            host = "www.sandbox.paypal.com" if self.use_sandbox else "www.paypal.com"
            logger.info(f"[PAYPAL] Mock create order for {reference}: {amount} {currency}")
            return PayPalOrderResult(
                is_success=True,
                paypal_order_id=paypal_order_id,
                approve_link=f"https://{host}/checkoutnow?token={paypal_order_id}",
            )

        payload = build_order_payload(reference, amount, currency, self.return_url, self.cancel_url)
        try:
            async with self._client() as client:
                token = await self.get_access_token(client)
                if not token:
                    return PayPalOrderResult(is_success=False, error="Failed to obtain PayPal access token")

                response = await client.post(
                    "/v2/checkout/orders",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                )
                if response.is_error:
                    logger.error(f"[PAYPAL] Create order failed for {reference}: {response.text}")
                    return PayPalOrderResult(is_success=False, error=f"PayPal API error: {response.text}")

                data = response.json()
                logger.info(f"[PAYPAL] Created order {data.get('id')} for {reference}")
                return PayPalOrderResult(
                    is_success=True,
                    paypal_order_id=data.get("id"),
                    approve_link=extract_approve_link(data),
                )
        except httpx.HTTPError as e:
            logger.error(f"[PAYPAL] Error creating order for {reference}: {str(e)}")
            return PayPalOrderResult(is_success=False, error=f"Error creating PayPal order: {str(e)}")

    async def _order_status(self, client: httpx.AsyncClient, token: str, paypal_order_id: str) -> Optional[str]:
        response = await client.get(
            f"/v2/checkout/orders/{paypal_order_id}",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        if response.is_error:
            logger.error(f"[PAYPAL] Status lookup failed for {paypal_order_id}: {response.text}")
            return None
        return response.json().get("status")

    async def capture_order(self, paypal_order_id: str) -> PayPalCaptureResult:
        """Capture an approved PayPal order."""
        if self.is_mock:
            logger.info(f"[PAYPAL] Mock capture for {paypal_order_id}")
            return PayPalCaptureResult(
                is_success=True,
                paypal_order_id=paypal_order_id,
                transaction_id=f"MOCK-CAPTURE-{uuid.uuid4()}",
                status="COMPLETED",
            )

        try:
            async with self._client() as client:
                token = await self.get_access_token(client)
                if not token:
                    return PayPalCaptureResult(
                        is_success=False,
                        paypal_order_id=paypal_order_id,
                        error="Failed to obtain PayPal access token",
                    )

                status = await self._order_status(client, token, paypal_order_id)
                if status is None:
                    return PayPalCaptureResult(
                        is_success=False,
                        paypal_order_id=paypal_order_id,
                        error="Failed to retrieve PayPal order status",
                    )
                if status != "APPROVED":
                    return PayPalCaptureResult(
                        is_success=False,
                        paypal_order_id=paypal_order_id,
                        status=status,
                        error=f"PayPal order is not approved. Current status: {status}",
                    )

                response = await client.post(
                    f"/v2/checkout/orders/{paypal_order_id}/capture",
                    json={},
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                )
                if response.is_error:
                    logger.error(f"[PAYPAL] Capture failed for {paypal_order_id}: {response.text}")
                    return PayPalCaptureResult(
                        is_success=False,
                        paypal_order_id=paypal_order_id,
                        error=f"PayPal capture error: {response.text}",
                    )

                data = response.json()
                status = data.get("status")
                if status != "COMPLETED":
                    return PayPalCaptureResult(
                        is_success=False,
                        paypal_order_id=paypal_order_id,
                        status=status,
                        error=f"PayPal payment status: {status}",
                    )

                logger.info(f"[PAYPAL] Captured {paypal_order_id}")
                return PayPalCaptureResult(
                    is_success=True,
                    paypal_order_id=paypal_order_id,
                    transaction_id=extract_capture_id(data),
                    status=status,
                )
        except httpx.HTTPError as e:
            logger.error(f"[PAYPAL] Error capturing {paypal_order_id}: {str(e)}")
            return PayPalCaptureResult(
                is_success=False,
                paypal_order_id=paypal_order_id,
                error=f"Error capturing PayPal payment: {str(e)}",
            )
