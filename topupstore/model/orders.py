from __future__ import annotations
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..helpers import new_trx_id, now_ts
from .db import Order, PENDING, PAYMENT_STATUSES, FULFILLMENT_STATUSES


class OrderStore:
    """Orders keyed by trx_id.

    Status changes are single conditional UPDATE statements; the boolean
    they return tells the caller whether *its* statement changed the row.
    Only that caller may trigger downstream effects.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self.sessions = sessions

    async def create(
        self, *, product_id: str, phone: str, product: str, sku: str,
        amount: int, payment: str = "Midtrans",
    ) -> Order:
        trx_id = new_trx_id()
        # two checkouts in the same millisecond collide on the pk
        for attempt in range(3):
            order = Order(
                trx_id=trx_id,
                product_id=product_id,
                phone=phone,
                product=product,
                sku=sku,
                amount=int(amount),
                payment=payment,
                payment_status=PENDING,
                fulfillment_status=PENDING,
                created_at=now_ts(),
            )
            async with self.sessions() as db:
                try:
                    async with db.begin():
                        db.add(order)
                    return order
                except IntegrityError:
                    trx_id = f"{new_trx_id()}-{uuid.uuid4().hex[:4]}"
        raise RuntimeError("could not allocate a unique trx_id")

    async def get(self, trx_id: str) -> Optional[Order]:
        async with self.sessions() as db:
            return await db.get(Order, trx_id)

    async def list_recent(self, limit: int = 200) -> List[Order]:
        async with self.sessions() as db:
            rows = await db.execute(
                select(Order)
                .order_by(Order.created_at.desc())
                .limit(max(1, min(limit, 1000)))
            )
            return list(rows.scalars())

    async def transition_payment(self, trx_id: str, new_status: str) -> bool:
        if new_status not in PAYMENT_STATUSES or new_status == PENDING:
            raise ValueError(f"invalid payment transition to {new_status}")
        async with self.sessions() as db:
            async with db.begin():
                res = await db.execute(
                    update(Order)
                    .where(
                        Order.trx_id == trx_id,
                        Order.payment_status == PENDING,
                    )
                    .values(payment_status=new_status, updated_at=now_ts())
                    .execution_options(synchronize_session=False)
                )
        return res.rowcount == 1

    async def set_fulfillment(
        self, trx_id: str, new_status: str, *,
        only_from: Optional[Iterable[str]] = None,
        never_from: Optional[Iterable[str]] = None,
    ) -> bool:
        """Set fulfillment status unless it already has that value.

        `only_from` / `never_from` restrict which current states may be
        overwritten.
        """
        if new_status not in FULFILLMENT_STATUSES:
            raise ValueError(f"invalid fulfillment status {new_status}")
        conds = [
            Order.trx_id == trx_id,
            Order.fulfillment_status != new_status,
        ]
        if only_from is not None:
            conds.append(Order.fulfillment_status.in_(list(only_from)))
        if never_from is not None:
            conds.append(Order.fulfillment_status.not_in(list(never_from)))
        async with self.sessions() as db:
            async with db.begin():
                res = await db.execute(
                    update(Order)
                    .where(*conds)
                    .values(fulfillment_status=new_status, updated_at=now_ts())
                    .execution_options(synchronize_session=False)
                )
        return res.rowcount == 1
