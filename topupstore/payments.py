from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, TypedDict
import uuid
import hmac
import hashlib
import base64

import httpx
import orjson

from .errors import UpstreamFailure, ValidationFailure
from .helpers import sha512_hex

SNAP_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
SNAP_PRODUCTION_URL = "https://app.midtrans.com/snap/v1/transactions"

# gateway transaction_status values that settle an order as failed
FAILED_STATUSES = ("cancel", "expire", "deny")


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    token: str
    redirect_url: str


class PaymentNotification(TypedDict):
    order_id: str
    transaction_status: str
    fraud_status: Optional[str]


class PaymentAdapter(ABC):
    name = "Midtrans"

    # `params` is the Snap request body: transaction_details,
    # customer_details, item_details, callbacks
    @abstractmethod
    async def create_session(self, params: dict) -> CreateSessionResult: ...

    @abstractmethod
    def verify_notification(
        self, payload: bytes, headers: Dict[str, str]
    ) -> PaymentNotification: ...


def _load_json(payload: bytes) -> dict:
    try:
        event = orjson.loads(payload)
    except orjson.JSONDecodeError:
        raise ValidationFailure("Invalid JSON")
    if not isinstance(event, dict):
        raise ValidationFailure("Invalid JSON")
    return event


def _notification(event: dict) -> PaymentNotification:
    order_id = event.get("order_id")
    status = event.get("transaction_status")
    if not order_id or not status:
        raise ValidationFailure("missing order_id or transaction_status")
    return {
        "order_id": str(order_id),
        "transaction_status": str(status),
        "fraud_status": event.get("fraud_status"),
    }


# ----------------------------
# Midtrans Snap implementation
# ----------------------------
class MidtransSnap(PaymentAdapter):

    def __init__(self, http: httpx.AsyncClient, *, server_key: str,
                 is_production: bool = False) -> None:
        self.http = http
        self.server_key = server_key
        self.url = SNAP_PRODUCTION_URL if is_production else SNAP_SANDBOX_URL

    async def create_session(self, params: dict) -> CreateSessionResult:
        try:
            r = await self.http.post(
                self.url,
                content=orjson.dumps(params),
                auth=(self.server_key, ""),
                headers={
                    "accept": "application/json",
                    "content-type": "application/json",
                },
            )
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamFailure(
                f"midtrans snap -> HTTP {e.response.status_code}: "
                f"{e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamFailure(f"midtrans snap failed: {e}") from e
        if not body.get("redirect_url"):
            raise UpstreamFailure(f"midtrans snap without redirect: {body!r}")
        return {"token": body.get("token", ""),
                "redirect_url": body["redirect_url"]}

    def verify_notification(
        self, payload: bytes, headers: Dict[str, str]
    ) -> PaymentNotification:
        event = _load_json(payload)
        # sha512(order_id + status_code + gross_amount + server_key)
        expected = sha512_hex(
            str(event.get("order_id", "")),
            str(event.get("status_code", "")),
            str(event.get("gross_amount", "")),
            self.server_key,
        )
        sig = event.get("signature_key") or ""
        if not hmac.compare_digest(expected, str(sig)):
            raise ValidationFailure("Invalid signature")
        return _notification(event)


# ----------------------------
# MockPay implementation (local development)
# ----------------------------
class MockPay(PaymentAdapter):
    """Hosted checkout served by this app under /mockpay/{order_id}.

    Its notifications have Midtrans' shape and are signed with an HMAC of
    the body in the x-mockpay-signature header.
    """

    def __init__(self, secret: str, base_url: str = "") -> None:
        self.secret = secret
        self.base_url = base_url.rstrip("/")

    async def create_session(self, params: dict) -> CreateSessionResult:
        order_id = params["transaction_details"]["order_id"]
        return {
            "token": f"mock_{uuid.uuid4().hex}",
            "redirect_url": f"{self.base_url}/mockpay/{order_id}",
        }

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_notification(
        self, order_id: str, gross_amount: int, transaction_status: str,
        fraud_status: Optional[str] = "accept",
    ) -> Tuple[bytes, Dict[str, str]]:
        event = {
            "order_id": order_id,
            "status_code": "200",
            "gross_amount": f"{gross_amount}.00",
            "transaction_status": transaction_status,
            "fraud_status": fraud_status,
            "transaction_id": uuid.uuid4().hex,
        }
        payload = orjson.dumps(event)
        return payload, {
            "x-mockpay-signature": self.sign(payload),
            "content-type": "application/json",
        }

    def verify_notification(
        self, payload: bytes, headers: Dict[str, str]
    ) -> PaymentNotification:
        sig = headers.get("x-mockpay-signature")
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise ValidationFailure("Invalid signature")
        return _notification(_load_json(payload))
