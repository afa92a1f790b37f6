"""Reorder monitor: active simple items at or below their minimum stock."""

import logging
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.inventory import InventoryItem
from schemas.inventory import LowStockAlert

logger = logging.getLogger(__name__)


class StockAlertService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def low_stock_alerts(self) -> List[LowStockAlert]:
        res = await self.db.execute(
            select(InventoryItem)
            .where(InventoryItem.is_active == True)  # noqa: E712
            .where(InventoryItem.is_composite == False)  # noqa: E712
            .where(InventoryItem.min_stock.is_not(None))
            .where(InventoryItem.current_stock <= InventoryItem.min_stock)
            .order_by(func.lower(InventoryItem.name).asc())
            .execution_options(populate_existing=True)
        )
        items = res.scalars().all()

        alerts = [
            LowStockAlert(
                id=it.id,
                sku=it.sku,
                name=it.name,
                current_stock=it.current_stock,
                min_stock=it.min_stock,
                shortage=it.min_stock - it.current_stock,
                unit=it.unit,
            )
            for it in items
        ]
        if alerts:
            logger.info("%d item(s) at or below minimum stock", len(alerts))
        return alerts
