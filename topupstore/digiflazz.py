from __future__ import annotations
import hashlib
import hmac
from typing import Any, Dict, List, Optional

import httpx
import orjson

from .errors import UpstreamFailure, ValidationFailure
from .helpers import md5_hex
from .model.db import Order, FAILED, PROCESSING, SUCCESS

# distributor status strings (Indonesian) -> fulfillment status
STATUS_MAP = {"Sukses": SUCCESS, "Gagal": FAILED}


def map_status(status: Optional[str]) -> str:
    return STATUS_MAP.get(status or "", PROCESSING)


class DigiflazzClient:
    """Digital-goods distributor: price list, transactions, callbacks.

    Every request is signed with md5(username + key + <payload marker>),
    the marker being "pricelist" for the price list and the ref_id for a
    transaction.
    """

    def __init__(
        self, http: httpx.AsyncClient, *, username: str, dev_key: str,
        base_url: str = "https://api.digiflazz.com/v1",
        webhook_secret: str = "",
    ) -> None:
        self.http = http
        self.username = username
        self.dev_key = dev_key
        self.base_url = base_url.rstrip("/")
        self.webhook_secret = webhook_secret

    def sign(self, marker: str) -> str:
        return md5_hex(self.username, self.dev_key, marker)

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        try:
            r = await self.http.post(f"{self.base_url}{path}", json=body)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamFailure(
                f"digiflazz {path} -> HTTP {e.response.status_code}: "
                f"{e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"digiflazz {path} unreachable: {e}") from e
        except ValueError as e:
            raise UpstreamFailure(f"digiflazz {path} sent invalid JSON") from e

    async def price_list(self) -> List[dict]:
        payload = await self._post("/price-list", {
            "cmd": "prepaid",
            "username": self.username,
            "sign": self.sign("pricelist"),
        })
        data = payload.get("data") if isinstance(payload, dict) else None
        # errors come back as {"data": {"rc": ..., "message": ...}}
        if not isinstance(data, list):
            raise UpstreamFailure(f"digiflazz price list rejected: {data!r}")
        return data

    async def create_transaction(self, order: Order) -> dict:
        ref_id = order.trx_id
        payload = await self._post("/transaction", {
            "username": self.username,
            "buyer_sku_code": order.sku,
            "customer_no": order.product_id,
            "ref_id": ref_id,
            "sign": self.sign(ref_id),
        })
        data = payload.get("data") if isinstance(payload, dict) else None
        return data if isinstance(data, dict) else {}

    def parse_callback(self, body: bytes, headers: Dict[str, str]) -> dict:
        """Return the callback's `data` object.

        With a webhook secret configured the X-Hub-Signature header must be
        sha1=<hmac-sha1(secret, body)>.
        """
        if self.webhook_secret:
            sig = headers.get("x-hub-signature", "")
            mac = hmac.new(
                self.webhook_secret.encode(), body, hashlib.sha1
            ).hexdigest()
            if not hmac.compare_digest(f"sha1={mac}", sig):
                raise ValidationFailure("Invalid signature")
        try:
            payload = orjson.loads(body) if body else None
        except orjson.JSONDecodeError:
            raise ValidationFailure("Invalid data")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ValidationFailure("Invalid data")
        return data
