import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.catalog import CatalogProduct, OrderLineItem
from schemas.inventory import (
    CatalogLine,
    CatalogOrderStockCheck,
    OrderLine,
    OrderStockCheck,
    StockCheckResult,
    UnmappedProduct,
)
from services.availability import StockAvailabilityService

logger = logging.getLogger(__name__)


async def resolve_catalog_skus(db: AsyncSession, skus: Sequence[str]) -> Dict[str, Optional[UUID]]:
    """Map catalog SKUs to ledger item ids. Unknown SKUs are absent; unmapped ones map to None."""
    wanted = sorted({s for s in skus if s})
    if not wanted:
        return {}
    res = await db.execute(
        select(CatalogProduct.sku, CatalogProduct.inventory_item_id).where(CatalogProduct.sku.in_(wanted))
    )
    return {sku: item_id for sku, item_id in res.all()}


async def load_order_lines(db: AsyncSession, order_id: str) -> Tuple[List[CatalogLine], List[UnmappedProduct]]:
    """An order's lines in line order. Lines with a non-positive quantity (refunds,
    voided lines) cannot be checked or deducted and come back in the second list."""
    res = await db.execute(
        select(OrderLineItem)
        .where(OrderLineItem.order_id == order_id)
        .order_by(OrderLineItem.line_number, OrderLineItem.id)
    )
    lines: List[CatalogLine] = []
    unusable: List[UnmappedProduct] = []
    for li in res.scalars().all():
        if li.quantity is None or Decimal(str(li.quantity)) <= 0:
            unusable.append(UnmappedProduct(sku=li.sku or "", title=li.title or ""))
            continue
        lines.append(CatalogLine(sku=li.sku, title=li.title or "", quantity=li.quantity))
    return lines, unusable


class OrderStockService:
    """Aggregates per-line availability checks into one verdict for an order."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.availability = StockAvailabilityService(db)

    async def check_order(self, lines: Sequence[OrderLine]) -> OrderStockCheck:
        results: List[StockCheckResult] = []
        insufficient: List[StockCheckResult] = []

        for line in lines:
            result = await self.availability.check_item_stock(line.inventory_item_id, line.quantity)
            results.append(result)
            if not result.can_fulfill:
                insufficient.append(result)

        return OrderStockCheck(
            can_fulfill=len(insufficient) == 0,
            results=results,
            insufficient_items=insufficient,
        )

    async def check_catalog_lines(self, lines: Sequence[CatalogLine]) -> CatalogOrderStockCheck:
        """Like check_order, but lines reference catalog SKUs.

        Lines whose SKU is missing, unknown, or not mapped to a ledger item are
        reported in ``unmapped_products`` and do not affect ``can_fulfill``.
        """
        mapping = await resolve_catalog_skus(self.db, [l.sku for l in lines if l.sku])

        mapped: List[OrderLine] = []
        unmapped: List[UnmappedProduct] = []
        for line in lines:
            item_id = mapping.get(line.sku) if line.sku else None
            if item_id is None:
                unmapped.append(UnmappedProduct(sku=line.sku or "", title=line.title))
                continue
            mapped.append(OrderLine(inventory_item_id=item_id, quantity=line.quantity))

        if unmapped:
            logger.info("%d order line(s) have no inventory mapping", len(unmapped))

        verdict = await self.check_order(mapped)
        return CatalogOrderStockCheck(
            can_fulfill=verdict.can_fulfill,
            results=verdict.results,
            insufficient_items=verdict.insufficient_items,
            unmapped_products=unmapped,
        )

    async def check_order_by_catalog_refs(self, order_id: str) -> CatalogOrderStockCheck:
        lines, unusable = await load_order_lines(self.db, order_id)
        if unusable:
            logger.info("Order %s: %d line(s) with non-positive quantity ignored", order_id, len(unusable))
        verdict = await self.check_catalog_lines(lines)
        verdict.unmapped_products.extend(unusable)
        return verdict
