from __future__ import annotations
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import ProductNotFound
from .db import Product


class ProductStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self.sessions = sessions

    async def list_active(self, category: Optional[str] = None) -> List[Product]:
        q = select(Product).where(Product.is_active.is_(True))
        if category:
            q = q.where(Product.category == category)
        async with self.sessions() as db:
            rows = await db.execute(q.order_by(Product.brand.asc()))
            return list(rows.scalars())

    async def list_popular(self) -> List[Product]:
        async with self.sessions() as db:
            rows = await db.execute(
                select(Product)
                .where(Product.is_active.is_(True),
                       Product.is_popular.is_(True))
                .order_by(Product.brand.asc())
            )
            return list(rows.scalars())

    async def list_categories(self) -> List[str]:
        async with self.sessions() as db:
            rows = await db.execute(
                select(Product.category)
                .where(Product.is_active.is_(True))
                .distinct()
                .order_by(Product.category.asc())
            )
            return [r[0] for r in rows.all()]

    async def list_all(self) -> List[Product]:
        async with self.sessions() as db:
            rows = await db.execute(select(Product).order_by(Product.brand))
            return list(rows.scalars())

    async def get(self, product_id: int) -> Optional[Product]:
        async with self.sessions() as db:
            return await db.get(Product, product_id)

    async def get_by_brand(self, brand: str) -> Optional[Product]:
        async with self.sessions() as db:
            rows = await db.execute(
                select(Product).where(Product.brand == brand)
            )
            return rows.scalars().first()

    async def create(self, brand: str, category: str, *,
                     is_active: bool = False, is_popular: bool = False,
                     image_url: Optional[str] = None) -> Product:
        p = Product(brand=brand, category=category, is_active=is_active,
                    is_popular=is_popular, image_url=image_url)
        async with self.sessions() as db:
            async with db.begin():
                db.add(p)
        return p

    async def _mutate(self, product_id: int, fn) -> Product:
        async with self.sessions() as db:
            async with db.begin():
                p = await db.get(Product, product_id, with_for_update=True)
                if p is None:
                    raise ProductNotFound()
                fn(p)
            return p

    async def toggle_active(self, product_id: int) -> Product:
        def flip(p: Product):
            p.is_active = not p.is_active
        return await self._mutate(product_id, flip)

    async def toggle_popular(self, product_id: int) -> Product:
        def flip(p: Product):
            p.is_popular = not p.is_popular
        return await self._mutate(product_id, flip)

    async def set_image(self, product_id: int, image_url: str) -> Product:
        def assign(p: Product):
            p.image_url = (image_url or "").strip() or None
        return await self._mutate(product_id, assign)

    async def sync_from_price_list(self, entries: Iterable[dict]) -> int:
        # one product per brand, the last entry of a brand wins
        by_brand: dict[str, dict] = {}
        for item in entries:
            brand = item.get("brand")
            if brand:
                by_brand[brand] = item

        async with self.sessions() as db:
            async with db.begin():
                existing = {
                    p.brand: p for p in (await db.execute(
                        select(Product).where(
                            Product.brand.in_(list(by_brand))
                        )
                    )).scalars()
                }
                for brand, item in by_brand.items():
                    category = item.get("category") or ""
                    p = existing.get(brand)
                    if p is None:
                        db.add(Product(brand=brand, category=category,
                                       is_active=False, is_popular=False))
                    else:
                        p.category = category
        return len(by_brand)
