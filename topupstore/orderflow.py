from __future__ import annotations
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError

from .digiflazz import DigiflazzClient, map_status
from .errors import (
    DenominationNotFound, OrderNotFound, PersistenceFailure,
    UpstreamFailure, ValidationFailure,
)
from .logs import get_logger
from .model.db import (
    Order, FAILED, PENDING, PROCESSING, SUCCESS, TERMINAL_FULFILLMENT,
)
from .model.orders import OrderStore
from .model.pricecache import PriceCache
from .notify import MessageKind, Notifier
from .payments import FAILED_STATUSES, PaymentAdapter
from .pricing import find_denomination, selling_price
from .tasks import TaskRunner

log = get_logger("orderflow")

POLICY_OVERWRITE = "overwrite"
POLICY_IGNORE_TERMINAL = "ignore_terminal"
CALLBACK_POLICIES = (POLICY_OVERWRITE, POLICY_IGNORE_TERMINAL)


class OrderFlow:
    """Order lifecycle: checkout, payment notification, fulfillment.

    Payment and fulfillment status move independently. Payment leaves
    PENDING exactly once (compare-and-swap in OrderStore); only the
    webhook delivery that wins that swap dispatches the order to the
    distributor and sends the invoice message, both as background tasks.
    """

    def __init__(
        self, *, orders: OrderStore,
        prices: PriceCache, gateway: PaymentAdapter,
        digiflazz: DigiflazzClient, notifier: Notifier, runner: TaskRunner,
        app_base_url: str, callback_policy: str = POLICY_OVERWRITE,
    ) -> None:
        if callback_policy not in CALLBACK_POLICIES:
            raise ValueError(
                f"unknown fulfillment callback policy {callback_policy!r}"
            )
        self.orders = orders
        self.prices = prices
        self.gateway = gateway
        self.digiflazz = digiflazz
        self.notifier = notifier
        self.runner = runner
        self.app_base_url = app_base_url.rstrip("/")
        self.callback_policy = callback_policy

    # ----------------------------
    # Checkout
    # ----------------------------
    async def place_order(
        self, product_id: str, phone: str, product_name: str
    ) -> str:
        entries = await self.prices.get()
        denom = find_denomination(entries, product_name)
        if denom is None:
            # stale selection on the client, or price list unavailable
            raise DenominationNotFound()

        amount = selling_price(denom.get("price", 0), denom.get("category", ""))
        order = await self.orders.create(
            product_id=product_id,
            phone=phone,
            product=product_name,
            sku=denom["buyer_sku_code"],
            amount=amount,
            payment=self.gateway.name,
        )
        log.info("order.created", trx_id=order.trx_id, sku=order.sku,
                 amount=amount)

        invoice = f"{self.app_base_url}/invoice/{order.trx_id}"
        params = {
            "transaction_details": {
                "order_id": order.trx_id,
                "gross_amount": amount,
            },
            "customer_details": {"first_name": product_id, "phone": phone},
            "item_details": [{
                "id": order.sku,
                "price": amount,
                "quantity": 1,
                "name": product_name,
            }],
            "callbacks": {
                "finish": invoice,
                "pending": invoice,
                "error": f"{self.app_base_url}/",
            },
        }
        try:
            session = await self.gateway.create_session(params)
        except UpstreamFailure as e:
            log.error("checkout.gateway_failed", trx_id=order.trx_id,
                      error=str(e))
            raise
        return session["redirect_url"]

    # ----------------------------
    # Payment gateway notification
    # ----------------------------
    async def handle_payment_notification(
        self, payload: bytes, headers: Dict[str, str]
    ) -> str:
        note = self.gateway.verify_notification(payload, headers)
        trx_id = note["order_id"]
        status = note["transaction_status"]
        fraud = note["fraud_status"]
        log.info("payment.notification", trx_id=trx_id, status=status,
                 fraud=fraud)

        order = await self.orders.get(trx_id)
        if order is None:
            raise OrderNotFound("Order not found")

        if status == "settlement" and fraud == "accept":
            if not await self.orders.transition_payment(trx_id, SUCCESS):
                log.info("payment.already_settled", trx_id=trx_id)
                return "unchanged"
            log.info("payment.success", trx_id=trx_id)
            self.runner.spawn(
                "fulfillment.dispatch", lambda: self.dispatch(order),
                trx_id=trx_id,
            )
            self.runner.spawn(
                "notify.invoice",
                lambda: self.notifier.notify(order, MessageKind.INVOICE),
                trx_id=trx_id,
            )
            return SUCCESS

        if status in FAILED_STATUSES:
            if not await self.orders.transition_payment(trx_id, FAILED):
                log.info("payment.already_settled", trx_id=trx_id)
                return "unchanged"
            log.info("payment.failed", trx_id=trx_id, status=status)
            return FAILED

        # pending / capture / authorize: wait for the next notification
        return "unchanged"

    # ----------------------------
    # Fulfillment
    # ----------------------------
    async def dispatch(self, order: Order) -> str:
        try:
            await self.digiflazz.create_transaction(order)
        except UpstreamFailure as e:
            await self.orders.set_fulfillment(
                order.trx_id, FAILED, only_from=(PENDING,)
            )
            log.error("fulfillment.dispatch_failed", trx_id=order.trx_id,
                      error=str(e))
            raise
        # a quick callback may already have reported the final status
        await self.orders.set_fulfillment(
            order.trx_id, PROCESSING, only_from=(PENDING,)
        )
        log.info("fulfillment.dispatched", trx_id=order.trx_id)
        return PROCESSING

    async def handle_fulfillment_callback(
        self, payload: bytes, headers: Dict[str, str]
    ) -> str:
        data = self.digiflazz.parse_callback(payload, headers)
        trx_id = data.get("ref_id")
        if not trx_id:
            raise ValidationFailure("Invalid data")
        new_status = map_status(data.get("status"))
        log.info("fulfillment.callback", trx_id=trx_id,
                 status=data.get("status"), mapped=new_status)

        never_from = None
        if self.callback_policy == POLICY_IGNORE_TERMINAL:
            never_from = TERMINAL_FULFILLMENT

        try:
            changed = await self.orders.set_fulfillment(
                trx_id, new_status, never_from=never_from
            )
            order = await self.orders.get(trx_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure(str(e)) from e
        if order is None:
            raise PersistenceFailure(f"no order {trx_id}")

        if not changed:
            log.info("fulfillment.callback_unchanged", trx_id=trx_id,
                     current=order.fulfillment_status, reported=new_status)
            return order.fulfillment_status

        if new_status == SUCCESS:
            self.runner.spawn(
                "notify.fulfillment_complete",
                lambda: self.notifier.notify(
                    order, MessageKind.FULFILLMENT_COMPLETE
                ),
                trx_id=trx_id,
            )
        return new_status
