import math
from datetime import datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ItemNotFound
from db.inventory import InventoryItem, StockMovement
from schemas.inventory import (
    MovementFilter,
    MovementPage,
    Pagination,
    ReconciliationResult,
    StockMovementOut,
)


class StockMovementService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_movements(self, filters: MovementFilter) -> MovementPage:
        """Movement history, newest first. ``end_date`` covers the whole day."""
        conditions = []
        if filters.item_id:
            conditions.append(StockMovement.item_id == filters.item_id)
        if filters.type:
            conditions.append(StockMovement.type == filters.type)
        if filters.start_date:
            conditions.append(StockMovement.created_at >= datetime.combine(filters.start_date, time.min))
        if filters.end_date:
            conditions.append(StockMovement.created_at <= datetime.combine(filters.end_date, time.max))

        total = (
            await self.db.execute(select(func.count()).select_from(StockMovement).where(*conditions))
        ).scalar_one()

        res = await self.db.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        movements = [StockMovementOut.model_validate(m) for m in res.scalars().all()]

        return MovementPage(
            movements=movements,
            pagination=Pagination(
                page=filters.page,
                limit=filters.limit,
                total=total,
                total_pages=math.ceil(total / filters.limit),
            ),
        )

    async def reconcile(self, item_id: UUID) -> ReconciliationResult:
        """Replay an item's movements and compare the result with its stored balance."""
        res = await self.db.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = res.scalar_one_or_none()
        if item is None:
            raise ItemNotFound(item_id)

        current = Decimal(str(item.current_stock))
        mres = await self.db.execute(
            select(StockMovement)
            .where(StockMovement.item_id == item_id)
            .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        )
        movements = mres.scalars().all()

        inconsistent = [
            m.id for m in movements if m.previous_stock + m.quantity != m.new_stock
        ]
        if not movements:
            opening = current
            balance = current
        else:
            opening = Decimal(str(movements[0].previous_stock))
            balance = opening + sum((Decimal(str(m.quantity)) for m in movements), Decimal("0"))

        return ReconciliationResult(
            item_id=item.id,
            sku=item.sku,
            current_stock=current,
            opening_stock=opening,
            ledger_balance=balance,
            movement_count=len(movements),
            is_balanced=balance == current,
            inconsistent_movement_ids=inconsistent,
        )
