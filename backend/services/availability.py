"""Stock availability checks for simple and composite inventory items.

A simple item is available up to its own ``current_stock``. A composite item
is assembled from a single level of recipe components, so its availability is
the number of finished units the scarcest component can support. The
composite's own ``current_stock`` column is never consulted.

Checks are read-only snapshots. They never raise for an unknown item, a
missing recipe or short stock; those outcomes are described in the result.
"""

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.inventory import InventoryItem, RecipeComponent
from schemas.inventory import (
    InsufficientComponent,
    LimitingComponent,
    ProductionCapacity,
    StockCheckResult,
    StockIssue,
)

logger = logging.getLogger(__name__)


def _dec(x) -> Decimal:
    return Decimal(str(x)) if x is not None else Decimal("0")


def floor_units(stock: Decimal, per_unit: Decimal) -> int:
    """Whole finished units that ``stock`` covers at ``per_unit`` each."""
    return int((stock / per_unit).to_integral_value(rounding=ROUND_FLOOR))


async def load_item_with_recipe(db: AsyncSession, item_id: UUID) -> Optional[InventoryItem]:
    res = await db.execute(
        select(InventoryItem)
        .options(
            selectinload(InventoryItem.recipe_components).selectinload(RecipeComponent.component_item)
        )
        .where(InventoryItem.id == item_id)
        # Balances may have moved through Core UPDATEs since this session last saw the row
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


class StockAvailabilityService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_item_stock(self, item_id: UUID, quantity) -> StockCheckResult:
        requested = _dec(quantity)
        if requested < 0:
            raise ValueError("quantity must be >= 0")

        item = await load_item_with_recipe(self.db, item_id)
        if item is None:
            logger.debug("Stock check for unknown item %s", item_id)
            return StockCheckResult(
                item_id=item_id,
                sku="",
                name="Item not found",
                is_composite=False,
                has_recipe=False,
                can_fulfill=False,
                available_quantity=Decimal("0"),
                requested_quantity=requested,
                issue=StockIssue.NOT_FOUND,
            )

        components: List[RecipeComponent] = list(item.recipe_components or [])
        result = StockCheckResult(
            item_id=item.id,
            sku=item.sku,
            name=item.name,
            is_composite=bool(item.is_composite),
            has_recipe=len(components) > 0,
            can_fulfill=True,
            available_quantity=Decimal("0"),
            requested_quantity=requested,
        )

        if not item.is_composite:
            current = _dec(item.current_stock)
            result.available_quantity = current
            result.can_fulfill = current >= requested
            if not result.can_fulfill:
                result.issue = StockIssue.INSUFFICIENT_STOCK
                result.insufficient_components.append(
                    InsufficientComponent(
                        component_id=item.id,
                        component_sku=item.sku,
                        component_name=item.name,
                        required_quantity=requested,
                        available_stock=current,
                        shortage=requested - current,
                    )
                )
            return result

        if not components:
            result.can_fulfill = False
            result.issue = StockIssue.NO_RECIPE
            return result

        min_units: Optional[int] = None
        for comp in components:
            per_unit = _dec(comp.quantity)
            required = per_unit * requested
            available = _dec(comp.component_item.current_stock)

            units = floor_units(available, per_unit)
            min_units = units if min_units is None else min(min_units, units)

            # Report every short component, not just the first one
            if available < required:
                result.can_fulfill = False
                result.insufficient_components.append(
                    InsufficientComponent(
                        component_id=comp.component_item.id,
                        component_sku=comp.component_item.sku,
                        component_name=comp.component_item.name,
                        required_quantity=required,
                        available_stock=available,
                        shortage=required - available,
                    )
                )

        result.available_quantity = Decimal(min_units)
        if not result.can_fulfill:
            result.issue = StockIssue.INSUFFICIENT_STOCK
        return result

    async def production_capacity(self, item_id: UUID) -> ProductionCapacity:
        item = await load_item_with_recipe(self.db, item_id)
        if item is None or not item.is_composite or not item.recipe_components:
            return ProductionCapacity(
                item_id=item_id,
                sku=item.sku if item else "",
                name=item.name if item else "",
                can_produce=0,
            )

        min_capacity: Optional[int] = None
        limiting: Optional[LimitingComponent] = None
        for comp in item.recipe_components:
            stock = _dec(comp.component_item.current_stock)
            per_unit = _dec(comp.quantity)
            capacity = floor_units(stock, per_unit)
            if min_capacity is None or capacity < min_capacity:
                min_capacity = capacity
                limiting = LimitingComponent(
                    id=comp.component_item.id,
                    sku=comp.component_item.sku,
                    name=comp.component_item.name,
                    current_stock=stock,
                    required_per_unit=per_unit,
                )

        return ProductionCapacity(
            item_id=item.id,
            sku=item.sku,
            name=item.name,
            can_produce=min_capacity,
            limiting_component=limiting,
        )
