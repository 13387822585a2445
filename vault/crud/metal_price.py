from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from pydantic import BaseModel

from vault.crud.base import CRUDBase
from vault.models.metal_price import MetalPrice


class CRUDMetalPrice(CRUDBase[MetalPrice, BaseModel, BaseModel]):
    async def get_by_symbol(self, db: AsyncSession, metal_symbol: str) -> Optional[MetalPrice]:
        result = await db.execute(
            select(self.model).where(
                and_(self.model.metal_symbol == metal_symbol, self.model.is_deleted == False)
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self, db: AsyncSession) -> List[MetalPrice]:
        result = await db.execute(
            select(self.model)
            .where(self.model.is_deleted == False)
            .order_by(self.model.metal_symbol.asc())
        )
        return list(result.scalars().all())

    async def upsert(self, db: AsyncSession, *, metal_symbol: str, price: float, last_updated: datetime) -> MetalPrice:
        existing = await self.get_by_symbol(db, metal_symbol)
        if existing:
            return await self.update(db, db_obj=existing, obj_in={"price": price, "last_updated": last_updated})
        db_obj = self.model(metal_symbol=metal_symbol, price=price, last_updated=last_updated)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj


metal_price_crud = CRUDMetalPrice(MetalPrice)
