"""Tests for the PayPal client against a mocked transport."""

import json
from decimal import Decimal

import httpx
import pytest

from paypal_client import PayPalClient, build_order_payload, extract_approve_link, extract_capture_id

BASE_URL = "https://api.sandbox.paypal.test"


class FakePayPal:
    """Records requests and answers with canned PayPal responses."""

    def __init__(self, order_status="APPROVED", capture_status="COMPLETED", token_status=200, create_status=201):
        self.order_status = order_status
        self.capture_status = capture_status
        self.token_status = token_status
        self.create_status = create_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "token-123", "expires_in": 3600})
        if path == "/v2/checkout/orders" and request.method == "POST":
            if self.create_status >= 400:
                return httpx.Response(self.create_status, json={"name": "UNPROCESSABLE_ENTITY"})
            return httpx.Response(
                201,
                json={
                    "id": "PAYPAL-1",
                    "status": "CREATED",
                    "links": [
                        {"rel": "self", "href": f"{BASE_URL}/v2/checkout/orders/PAYPAL-1"},
                        {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=PAYPAL-1"},
                    ],
                },
            )
        if path == "/v2/checkout/orders/PAYPAL-1" and request.method == "GET":
            return httpx.Response(200, json={"id": "PAYPAL-1", "status": self.order_status})
        if path == "/v2/checkout/orders/PAYPAL-1/capture":
            return httpx.Response(
                201,
                json={
                    "id": "PAYPAL-1",
                    "status": self.capture_status,
                    "purchase_units": [{"payments": {"captures": [{"id": "CAPTURE-9", "status": "COMPLETED"}]}}],
                },
            )
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})

    def paths(self):
        return [(r.method, r.url.path) for r in self.requests]


def make_client(fake) -> PayPalClient:
    return PayPalClient(
        client_id="id",
        client_secret="secret",
        base_url=BASE_URL,
        return_url="app://return",
        cancel_url="app://cancel",
        transport=httpx.MockTransport(fake),
    )


class TestPayloadHelpers:
    def test_order_payload(self):
        payload = build_order_payload("ORD-1", Decimal("250"), "EUR", "app://return", "app://cancel")
        assert payload["intent"] == "CAPTURE"
        unit = payload["purchase_units"][0]
        assert unit["reference_id"] == "ORD-1"
        assert unit["amount"] == {"currency_code": "EUR", "value": "250.00"}
        assert payload["application_context"]["return_url"] == "app://return"

    def test_approve_link(self):
        data = {"links": [{"rel": "self", "href": "a"}, {"rel": "approve", "href": "b"}]}
        assert extract_approve_link(data) == "b"
        assert extract_approve_link({}) is None

    def test_capture_id(self):
        data = {"purchase_units": [{"payments": {"captures": [{"id": "C-1"}]}}]}
        assert extract_capture_id(data) == "C-1"
        assert extract_capture_id({"purchase_units": []}) is None


class TestMockMode:
    def test_without_credentials(self):
        assert PayPalClient(client_id="", client_secret="").is_mock
        assert PayPalClient(client_id="id", client_secret=" ").is_mock
        assert not PayPalClient(client_id="id", client_secret="secret").is_mock

    async def test_mock_create_and_capture(self):
        client = PayPalClient(client_id="", client_secret="", use_sandbox=True)
        created = await client.create_order("ORD-1", Decimal("250"))
        assert created.is_success
        assert created.approve_link == f"https://www.sandbox.paypal.com/checkoutnow?token={created.paypal_order_id}"

        captured = await client.capture_order(created.paypal_order_id)
        assert captured.is_success
        assert captured.status == "COMPLETED"


class TestCreateOrder:
    async def test_success(self):
        fake = FakePayPal()
        result = await make_client(fake).create_order("ORD-1", Decimal("250"), "EUR")

        assert result.is_success
        assert result.paypal_order_id == "PAYPAL-1"
        assert result.approve_link == "https://www.sandbox.paypal.com/checkoutnow?token=PAYPAL-1"
        assert fake.paths() == [("POST", "/v1/oauth2/token"), ("POST", "/v2/checkout/orders")]

        create_request = fake.requests[1]
        assert create_request.headers["Authorization"] == "Bearer token-123"
        body = json.loads(create_request.content)
        assert body["purchase_units"][0]["amount"]["value"] == "250.00"

    async def test_token_refused(self):
        fake = FakePayPal(token_status=401)
        result = await make_client(fake).create_order("ORD-1", Decimal("250"))

        assert not result.is_success
        assert "access token" in result.error
        assert len(fake.requests) == 1

    async def test_api_error(self):
        result = await make_client(FakePayPal(create_status=422)).create_order("ORD-1", Decimal("250"))
        assert not result.is_success
        assert "PayPal API error" in result.error

    async def test_network_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_client(unreachable).create_order("ORD-1", Decimal("250"))
        assert not result.is_success
        assert "connection refused" in result.error


class TestCaptureOrder:
    async def test_success(self):
        fake = FakePayPal()
        result = await make_client(fake).capture_order("PAYPAL-1")

        assert result.is_success
        assert result.status == "COMPLETED"
        assert result.transaction_id == "CAPTURE-9"
        assert fake.paths() == [
            ("POST", "/v1/oauth2/token"),
            ("GET", "/v2/checkout/orders/PAYPAL-1"),
            ("POST", "/v2/checkout/orders/PAYPAL-1/capture"),
        ]

    async def test_not_approved_is_not_captured(self):
        fake = FakePayPal(order_status="CREATED")
        result = await make_client(fake).capture_order("PAYPAL-1")

        assert not result.is_success
        assert result.status == "CREATED"
        assert ("POST", "/v2/checkout/orders/PAYPAL-1/capture") not in fake.paths()

    async def test_capture_not_completed(self):
        result = await make_client(FakePayPal(capture_status="PENDING")).capture_order("PAYPAL-1")
        assert not result.is_success
        assert result.status == "PENDING"

    async def test_unknown_order(self):
        result = await make_client(FakePayPal()).capture_order("PAYPAL-404")
        assert not result.is_success
        assert "status" in result.error

    @pytest.mark.parametrize("token_status", [401, 500])
    async def test_token_refused(self, token_status):
        result = await make_client(FakePayPal(token_status=token_status)).capture_order("PAYPAL-1")
        assert not result.is_success
        assert result.paypal_order_id == "PAYPAL-1"
