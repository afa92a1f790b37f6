"""Pytest configuration and fixtures."""

from decimal import Decimal
from typing import AsyncGenerator, List, Tuple
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.database import Base, get_async_session
# Import all models to ensure they're registered with Base.metadata
from db.catalog import CatalogProduct, OrderLineItem
from db.inventory import InventoryItem, RecipeComponent, StockMovement
from main import app


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh file-backed SQLite database, so concurrent sessions see the same data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_item(db_session):
    """Create and commit a simple (or empty composite) inventory item."""

    async def _make(
        sku: str,
        stock=0,
        *,
        name: str = None,
        min_stock=None,
        is_composite: bool = False,
        is_active: bool = True,
        unit: str = "pcs",
    ) -> InventoryItem:
        item = InventoryItem(
            sku=sku,
            name=name or sku.title(),
            unit=unit,
            current_stock=Decimal(str(stock)),
            min_stock=Decimal(str(min_stock)) if min_stock is not None else None,
            is_composite=is_composite,
            is_active=is_active,
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest.fixture
def make_composite(db_session, make_item):
    """Create a composite item with recipe lines given as (component, quantity per unit)."""

    async def _make(sku: str, lines: List[Tuple[InventoryItem, object]], *, stock=0, name: str = None) -> InventoryItem:
        box = await make_item(sku, stock, name=name, is_composite=True)
        for position, (component, per_unit) in enumerate(lines):
            db_session.add(
                RecipeComponent(
                    composite_item_id=box.id,
                    component_item_id=component.id,
                    quantity=Decimal(str(per_unit)),
                    sort_order=position,
                )
            )
        await db_session.commit()
        return box

    return _make


@pytest.fixture
def stock_of(session_maker):
    """Read the live balance through a separate session."""

    async def _stock(item_id: UUID) -> Decimal:
        async with session_maker() as s:
            res = await s.execute(select(InventoryItem.current_stock).where(InventoryItem.id == item_id))
            return Decimal(str(res.scalar_one()))

    return _stock


@pytest.fixture
def movement_count(session_maker):
    async def _count(item_id: UUID = None) -> int:
        async with session_maker() as s:
            stmt = select(func.count()).select_from(StockMovement)
            if item_id is not None:
                stmt = stmt.where(StockMovement.item_id == item_id)
            return (await s.execute(stmt)).scalar_one()

    return _count


@pytest.fixture
def make_product(db_session):
    """Catalog product, mapped to ``item`` when given."""

    async def _make(sku: str, item: InventoryItem = None, *, title: str = None) -> CatalogProduct:
        product = CatalogProduct(sku=sku, title=title or sku.title(), inventory_item_id=item.id if item else None)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make


@pytest.fixture
def add_order_lines(db_session):
    """Insert order lines given as (sku, title, quantity), numbered in the order given."""

    async def _add(order_id: str, lines) -> None:
        for number, (sku, title, quantity) in enumerate(lines, start=1):
            db_session.add(
                OrderLineItem(
                    order_id=order_id,
                    line_number=number,
                    sku=sku,
                    title=title,
                    quantity=Decimal(str(quantity)),
                )
            )
        await db_session.commit()

    return _add
