"""
Seed a small demo inventory.

This script:
- Deletes ALL stock movements, deduction records, recipes, catalog rows and items.
- Creates a few simple raw-material items with opening stock.
- Creates one composite gift box with a two-line recipe.
- Maps catalog SKUs to the ledger items and adds one demo order.

Run:
  cd backend && PYTHONPATH=. python scripts/seed_demo_inventory.py

Optional env vars:
- OPENING_STOCK (default: 100)
"""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from db.catalog import CatalogProduct, OrderLineItem
from db.database import async_session_maker, create_db_and_tables
from db.inventory import InventoryItem, RecipeComponent, StockDeduction, StockMovement

DEMO_ORDER_ID = "DEMO-1001"


def _env_decimal(name: str, default: str) -> Decimal:
    try:
        return Decimal(os.getenv(name, default).strip())
    except Exception:
        return Decimal(default)


async def seed(db: AsyncSession, opening_stock: Decimal = Decimal("100")) -> dict:
    # wipe (children first)
    await db.execute(delete(StockMovement))
    await db.execute(delete(StockDeduction))
    await db.execute(delete(OrderLineItem))
    await db.execute(delete(CatalogProduct))
    await db.execute(delete(RecipeComponent))
    await db.execute(delete(InventoryItem))
    await db.commit()

    candle = InventoryItem(sku="RAW-CANDLE", name="Soy candle", unit="pcs",
                           current_stock=opening_stock, min_stock=Decimal("20"))
    soap = InventoryItem(sku="RAW-SOAP", name="Lavender soap", unit="pcs",
                         current_stock=opening_stock / 2, min_stock=Decimal("10"))
    ribbon = InventoryItem(sku="RAW-RIBBON", name="Ribbon", unit="m",
                           current_stock=Decimal("5"), min_stock=Decimal("5"))
    box = InventoryItem(sku="KIT-GIFTBOX", name="Gift box", unit="pcs", is_composite=True)
    db.add_all([candle, soap, ribbon, box])
    await db.flush()

    db.add_all([
        RecipeComponent(composite_item_id=box.id, component_item_id=candle.id, quantity=Decimal("2"), sort_order=0),
        RecipeComponent(composite_item_id=box.id, component_item_id=soap.id, quantity=Decimal("1"), sort_order=1),
    ])
    db.add_all([
        CatalogProduct(sku="SHOP-CANDLE", title="Soy candle", inventory_item_id=candle.id),
        CatalogProduct(sku="SHOP-GIFTBOX", title="Gift box", inventory_item_id=box.id),
        CatalogProduct(sku="SHOP-POSTER", title="Poster", inventory_item_id=None),
    ])
    db.add_all([
        OrderLineItem(order_id=DEMO_ORDER_ID, line_number=1, sku="SHOP-GIFTBOX", title="Gift box", quantity=Decimal("3")),
        OrderLineItem(order_id=DEMO_ORDER_ID, line_number=2, sku="SHOP-CANDLE", title="Soy candle", quantity=Decimal("1")),
        OrderLineItem(order_id=DEMO_ORDER_ID, line_number=3, sku="SHOP-POSTER", title="Poster", quantity=Decimal("1")),
    ])
    await db.commit()

    return {
        "items": 4,
        "recipe_components": 2,
        "catalog_products": 3,
        "order_id": DEMO_ORDER_ID,
    }


async def main() -> None:
    await create_db_and_tables()
    async with async_session_maker() as db:
        summary = await seed(db, _env_decimal("OPENING_STOCK", "100"))
    print("Seeded demo inventory:", summary)


if __name__ == "__main__":
    asyncio.run(main())
