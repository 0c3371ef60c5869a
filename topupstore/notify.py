from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence

import httpx

from .errors import UpstreamFailure
from .helpers import normalize_phone
from .logs import get_logger
from .model.db import Order

log = get_logger("notify")


class MessageKind(str, Enum):
    INVOICE = "invoice"
    FULFILLMENT_COMPLETE = "fulfillment_complete"


TEMPLATES = {
    MessageKind.INVOICE: (
        "Halo! Pembayaran untuk pesanan kamu sudah kami terima.\n\n"
        "Produk: {product}\n"
        "ID Tujuan: {product_id}\n"
        "No. Transaksi: {trx_id}\n\n"
        "Pesanan sedang kami proses. Cek status di:\n{invoice_url}"
    ),
    MessageKind.FULFILLMENT_COMPLETE: (
        "Pesanan kamu sudah selesai!\n\n"
        "Produk: {product}\n"
        "ID Tujuan: {product_id}\n"
        "No. Transaksi: {trx_id}\n\n"
        "Terima kasih sudah berbelanja. Invoice:\n{invoice_url}"
    ),
}


def render_message(kind: MessageKind, order: Order, invoice_url: str) -> str:
    return TEMPLATES[kind].format(
        product=order.product,
        product_id=order.product_id,
        trx_id=order.trx_id,
        invoice_url=invoice_url,
    )


# ----------------------------
# Messaging providers
# ----------------------------
class MessagingProvider(ABC):
    name = "provider"

    def __init__(self, http: httpx.AsyncClient, token: str) -> None:
        self.http = http
        self.token = token

    @property
    def configured(self) -> bool:
        return bool(self.token)

    @abstractmethod
    async def send(self, phone: str, message: str) -> None: ...

    def _check(self, r: httpx.Response) -> None:
        r.raise_for_status()
        body = r.json()
        # both providers answer 200 with {"status": false, ...} on rejection
        if isinstance(body, dict) and body.get("status") is False:
            raise UpstreamFailure(
                f"{self.name} rejected message: "
                f"{body.get('reason') or body.get('message')}"
            )


class Fonnte(MessagingProvider):
    name = "fonnte"
    url = "https://api.fonnte.com/send"

    async def send(self, phone: str, message: str) -> None:
        r = await self.http.post(
            self.url,
            headers={"Authorization": self.token},
            data={"target": phone, "message": message},
        )
        self._check(r)


class Wablas(MessagingProvider):
    name = "wablas"

    def __init__(self, http: httpx.AsyncClient, token: str,
                 base_url: str = "https://solo.wablas.com") -> None:
        super().__init__(http, token)
        self.base_url = base_url.rstrip("/")

    async def send(self, phone: str, message: str) -> None:
        r = await self.http.post(
            f"{self.base_url}/api/send-message",
            headers={"Authorization": self.token},
            json={"phone": phone, "message": message},
        )
        self._check(r)


class Notifier:
    """Best-effort WhatsApp messages to the buyer.

    The first configured provider is used (primary, then fallback); with
    none configured nothing is sent. `notify` never raises.
    """

    def __init__(self, providers: Sequence[MessagingProvider], *,
                 invoice_base_url: str, country_code: str = "62") -> None:
        self.providers: List[MessagingProvider] = list(providers)
        self.invoice_base_url = invoice_base_url.rstrip("/")
        self.country_code = country_code

    def provider(self) -> Optional[MessagingProvider]:
        for p in self.providers:
            if p.configured:
                return p
        return None

    async def notify(self, order: Order, kind: MessageKind) -> bool:
        provider = self.provider()
        if provider is None:
            log.info("notify.skipped", trx_id=order.trx_id, kind=kind.value,
                     reason="no provider configured")
            return False
        phone = normalize_phone(order.phone, self.country_code)
        if not phone:
            log.warning("notify.skipped", trx_id=order.trx_id,
                        kind=kind.value, reason="no phone number")
            return False
        message = render_message(
            kind, order, f"{self.invoice_base_url}/invoice/{order.trx_id}"
        )
        try:
            await provider.send(phone, message)
        except (httpx.HTTPError, ValueError, UpstreamFailure):
            log.error("notify.failed", trx_id=order.trx_id, kind=kind.value,
                      provider=provider.name, exc_info=True)
            return False
        log.info("notify.sent", trx_id=order.trx_id, kind=kind.value,
                 provider=provider.name)
        return True
