from __future__ import annotations
import hashlib
from typing import Callable, Dict, List, Optional

import httpx
import orjson
import pytest

from topupstore.config import Settings
from topupstore.server import create_app, init_db

BASE_URL = "http://shop.test"
SERVER_KEY = "SB-Mid-server-test"

PRICE_LIST = [
    {"brand": "X", "category": "Games", "product_name": "X 100 Diamonds",
     "buyer_sku_code": "X100", "price": 10000},
    {"brand": "X", "category": "Games", "product_name": "X Weekly Pass",
     "buyer_sku_code": "XWP", "price": 25000},
    {"brand": "TELKOMSEL", "category": "Pulsa",
     "product_name": "Telkomsel 5.000", "buyer_sku_code": "TS5",
     "price": 5100},
    {"brand": "Y", "category": "Games", "product_name": "Y 50 Kristal",
     "buyer_sku_code": "Y50", "price": 1000},
]


class Upstream:
    """httpx.MockTransport handler for every third-party API.

    Records each request per service; a service can be switched to fail
    with `fail(name, status)`.
    """

    def __init__(self) -> None:
        self.price_list: List[dict] = list(PRICE_LIST)
        self.requests: Dict[str, List[httpx.Request]] = {}
        self.failures: Dict[str, int] = {}
        self.hooks: Dict[str, Callable[[httpx.Request], None]] = {}

    def fail(self, service: str, status: int = 500) -> None:
        self.failures[service] = status

    def calls(self, service: str) -> List[httpx.Request]:
        return self.requests.get(service, [])

    def json(self, service: str, i: int = -1) -> dict:
        return orjson.loads(self.calls(service)[i].content)

    def _service(self, request: httpx.Request) -> Optional[str]:
        host, path = request.url.host, request.url.path
        if host == "api.digiflazz.com":
            return {"/v1/price-list": "pricelist",
                    "/v1/transaction": "transaction"}.get(path)
        if host == "app.sandbox.midtrans.com":
            return "snap"
        if host == "api.fonnte.com":
            return "fonnte"
        if host == "solo.wablas.com":
            return "wablas"
        return None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        service = self._service(request)
        if service is None:
            return httpx.Response(404, json={"error": "unknown upstream"})
        self.requests.setdefault(service, []).append(request)
        if service in self.hooks:
            self.hooks[service](request)
        if service in self.failures:
            return httpx.Response(self.failures[service],
                                  json={"message": "boom"})

        if service == "pricelist":
            return httpx.Response(200, json={"data": self.price_list})
        if service == "transaction":
            body = orjson.loads(request.content)
            return httpx.Response(200, json={"data": {
                "ref_id": body["ref_id"], "status": "Pending",
                "message": "Transaksi Pending",
            }})
        if service == "snap":
            body = orjson.loads(request.content)
            order_id = body["transaction_details"]["order_id"]
            return httpx.Response(201, json={
                "token": f"tok-{order_id}",
                "redirect_url":
                    f"https://app.sandbox.midtrans.com/snap/v2/vtweb/{order_id}",
            })
        return httpx.Response(200, json={"status": True})


def midtrans_notification(order_id: str, transaction_status: str,
                          fraud_status: Optional[str] = "accept",
                          gross_amount: str = "10700.00",
                          server_key: str = SERVER_KEY) -> bytes:
    status_code = "200"
    sig = hashlib.sha512(
        (order_id + status_code + gross_amount + server_key).encode()
    ).hexdigest()
    event = {
        "order_id": order_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "signature_key": sig,
    }
    if fraud_status is not None:
        event["fraud_status"] = fraud_status
    return orjson.dumps(event)


def digiflazz_callback(ref_id: str, status: str) -> bytes:
    return orjson.dumps({"data": {
        "ref_id": ref_id, "status": status, "customer_no": "12345",
        "buyer_sku_code": "X100", "message": status, "sn": "SN-1",
    }})


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        app_base_url=BASE_URL,
        session_secret="test-secret",
        admin_username="admin",
        admin_password="gaspol123",
        payment_backend="midtrans",
        midtrans_server_key=SERVER_KEY,
        mock_webhook_url=f"{BASE_URL}/midtrans-notification",
        digiflazz_username="gassuser",
        digiflazz_dev_key="dev-key",
        fonnte_token="fonnte-token",
        banner_dir=tmp_path / "banners",
        log_level="WARNING",
    )


@pytest.fixture
async def make_app(upstream):
    """Build an app (tables created) with all upstream traffic mocked."""
    apps = []

    async def _make(settings: Settings):
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        app = create_app(settings, http=http)
        await init_db(app)
        apps.append(app)
        return app

    yield _make

    for app in apps:
        await app.state.runner.drain()
        await app.state.http.aclose()
        await app.state.engine.dispose()


@pytest.fixture
async def app(make_app, settings):
    return await make_app(settings)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport,
                                 base_url=BASE_URL) as c:
        yield c


@pytest.fixture
async def admin_client(client):
    r = await client.post("/admin/login", data={
        "username": "admin", "password": "gaspol123",
        "next": "/admin/dashboard",
    })
    assert r.status_code == 303
    return client


@pytest.fixture
def flow(app):
    return app.state.flow


@pytest.fixture
def orders(app):
    return app.state.orders


@pytest.fixture
def products(app):
    return app.state.products
