import asyncio
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from core.exceptions import TransactionConflict
from db.inventory import MovementType, StockMovement
from schemas.inventory import DeductionContext
from services.deduction import StockDeductionService, is_conflict
from services.movements import StockMovementService


async def _movements_for(session_maker, item_id):
    async with session_maker() as s:
        res = await s.execute(select(StockMovement).where(StockMovement.item_id == item_id))
        return res.scalars().all()


async def test_deduct_simple_item(db_session, session_maker, make_item, stock_of):
    item = await make_item("SKU001", 100)
    ctx = DeductionContext(order_id="ORD-1", invoice_id="INV-1", user_id="u-1", user_name="Ana")

    result = await StockDeductionService(db_session).deduct(item.id, 30, ctx)

    assert result.success is True
    [m] = result.movements
    assert m.quantity == -30
    assert m.previous_stock == 100
    assert m.new_stock == 70
    assert await stock_of(item.id) == 70

    [row] = await _movements_for(session_maker, item.id)
    assert row.type == MovementType.SALE
    assert row.quantity == -30
    assert row.previous_stock + row.quantity == row.new_stock
    assert row.order_id == "ORD-1"
    assert row.invoice_id == "INV-1"
    assert row.user_name == "Ana"
    assert row.reason == "Sale"


async def test_deduct_may_go_negative_by_default(db_session, make_item, stock_of):
    item = await make_item("SKU001", 5)

    result = await StockDeductionService(db_session).deduct(item.id, 8)

    assert result.success is True
    assert await stock_of(item.id) == -3


async def test_deduct_with_floor_rejects_and_changes_nothing(session_maker, make_item, stock_of, movement_count):
    item = await make_item("SKU001", 5)

    async with session_maker() as s:
        result = await StockDeductionService(s).deduct(item.id, 8, DeductionContext(allow_negative=False))

    assert result.success is False
    assert "SKU001" in result.error
    assert await stock_of(item.id) == 5
    assert await movement_count(item.id) == 0


async def test_deduct_composite_consumes_components(session_maker, make_item, make_composite, stock_of):
    a = await make_item("COMP-A", 100)
    b = await make_item("COMP-B", 60)
    kit = await make_composite("KIT", [(a, 2), (b, 3)], name="Gift box", stock=7)

    async with session_maker() as s:
        result = await StockDeductionService(s).deduct(kit.id, 5)

    assert result.success is True
    assert [(m.sku, m.quantity) for m in result.movements] == [("COMP-A", -10), ("COMP-B", -15)]
    assert await stock_of(a.id) == 90
    assert await stock_of(b.id) == 45
    # the composite's own counter is never written
    assert await stock_of(kit.id) == 7

    [row_a] = await _movements_for(session_maker, a.id)
    assert row_a.previous_stock == 100
    assert row_a.new_stock == 90
    assert row_a.reason == "Sale - component consumption for Gift box"
    assert await _movements_for(session_maker, kit.id) == []


async def test_deduct_composite_without_recipe_fails(db_session, make_item, stock_of, movement_count):
    kit = await make_item("KIT", 10, is_composite=True)

    result = await StockDeductionService(db_session).deduct(kit.id, 1)

    assert result.success is False
    assert "no recipe" in result.error
    assert result.movements == []
    assert await stock_of(kit.id) == 10
    assert await movement_count() == 0


async def test_deduct_unknown_item_fails(db_session):
    result = await StockDeductionService(db_session).deduct(uuid.uuid4(), 1)

    assert result.success is False
    assert result.error == "Item not found"


@pytest.mark.parametrize("quantity", [0, -2])
async def test_deduct_requires_positive_quantity(db_session, make_item, quantity):
    item = await make_item("SKU001", 10)

    with pytest.raises(ValueError):
        await StockDeductionService(db_session).deduct(item.id, quantity)


async def test_composite_floor_miss_rolls_back_every_component(
    session_maker, make_item, make_composite, stock_of, movement_count
):
    a = await make_item("COMP-A", 100)
    b = await make_item("COMP-B", 2)
    kit = await make_composite("KIT", [(a, 1), (b, 1)])

    async with session_maker() as s:
        result = await StockDeductionService(s).deduct(kit.id, 5, DeductionContext(allow_negative=False))

    assert result.success is False
    assert "COMP-B" in result.error
    assert await stock_of(a.id) == 100
    assert await stock_of(b.id) == 2
    assert await movement_count() == 0


async def test_store_failure_mid_composite_rolls_back(
    monkeypatch, session_maker, make_item, make_composite, stock_of, movement_count
):
    a = await make_item("COMP-A", 100)
    b = await make_item("COMP-B", 100)
    kit = await make_composite("KIT", [(a, 1), (b, 1)])

    original = StockDeductionService._apply_delta
    calls = {"n": 0}

    async def flaky_apply_delta(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("UPDATE inventory_items", {}, Exception("database is locked"))
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(StockDeductionService, "_apply_delta", flaky_apply_delta)

    async with session_maker() as s:
        with pytest.raises(TransactionConflict):
            await StockDeductionService(s).deduct(kit.id, 3)

    assert calls["n"] == 2
    assert await stock_of(a.id) == 100
    assert await stock_of(b.id) == 100
    assert await movement_count() == 0


async def test_concurrent_deductions_lose_no_updates(session_maker, make_item, stock_of, movement_count):
    start, n = 25, 20
    item = await make_item("SKU001", start)

    async def one():
        async with session_maker() as s:
            return await StockDeductionService(s).deduct(item.id, 1)

    results = await asyncio.gather(*(one() for _ in range(n)))

    assert all(r.success for r in results)
    assert await stock_of(item.id) == start - n
    assert await movement_count(item.id) == n
    # every movement saw a distinct previous balance
    assert sorted(r.movements[0].previous_stock for r in results) == list(range(start - n + 1, start + 1))


async def test_concurrent_composite_deductions(session_maker, make_item, make_composite, stock_of):
    a = await make_item("COMP-A", 100)
    b = await make_item("COMP-B", 100)
    kit_1 = await make_composite("KIT-1", [(a, 2), (b, 1)])
    kit_2 = await make_composite("KIT-2", [(b, 3), (a, 1)])

    async def one(kit_id):
        async with session_maker() as s:
            return await StockDeductionService(s).deduct(kit_id, 1)

    results = await asyncio.gather(*(one(k) for k in [kit_1.id, kit_2.id] * 5))

    assert all(r.success for r in results)
    assert await stock_of(a.id) == 100 - 5 * 2 - 5 * 1
    assert await stock_of(b.id) == 100 - 5 * 1 - 5 * 3


async def test_repeat_deduction_for_same_order_is_rejected(session_maker, make_item, stock_of, movement_count):
    item = await make_item("SKU001", 10)
    ctx = DeductionContext(order_id="ORD-9", invoice_id="INV-9")

    async with session_maker() as s:
        first = await StockDeductionService(s, enforce_idempotency=True).deduct(item.id, 4, ctx)
    async with session_maker() as s:
        second = await StockDeductionService(s, enforce_idempotency=True).deduct(item.id, 4, ctx)

    assert first.success is True
    assert second.success is False
    assert "already deducted" in second.error
    assert await stock_of(item.id) == 6
    assert await movement_count(item.id) == 1


async def test_other_invoice_for_same_order_is_a_new_deduction(session_maker, make_item, stock_of):
    item = await make_item("SKU001", 10)

    async with session_maker() as s:
        svc = StockDeductionService(s, enforce_idempotency=True)
        await svc.deduct(item.id, 1, DeductionContext(order_id="ORD-9", invoice_id="INV-1"))
        await svc.deduct(item.id, 1, DeductionContext(order_id="ORD-9", invoice_id="INV-2"))

    assert await stock_of(item.id) == 8


async def test_idempotency_can_be_disabled(db_session, make_item, stock_of):
    item = await make_item("SKU001", 10)
    ctx = DeductionContext(order_id="ORD-9")
    svc = StockDeductionService(db_session, enforce_idempotency=False)

    await svc.deduct(item.id, 2, ctx)
    await svc.deduct(item.id, 2, ctx)

    assert await stock_of(item.id) == 6


async def test_ledger_replay_matches_balance(session_maker, make_item, make_composite):
    a = await make_item("COMP-A", 40)
    kit = await make_composite("KIT", [(a, 3)])

    async with session_maker() as s:
        svc = StockDeductionService(s)
        await svc.deduct(a.id, 4)
        await svc.deduct(kit.id, 2)
        await svc.deduct(a.id, 1, DeductionContext(movement_type=MovementType.TRANSFER))

    async with session_maker() as s:
        rec = await StockMovementService(s).reconcile(a.id)

    assert rec.movement_count == 3
    assert rec.opening_stock == 40
    assert rec.current_stock == 40 - 4 - 6 - 1
    assert rec.ledger_balance == rec.current_stock
    assert rec.is_balanced is True
    assert rec.inconsistent_movement_ids == []


def test_conflict_detection():
    assert is_conflict(OperationalError("UPDATE", {}, Exception("database is locked")))
    assert not is_conflict(OperationalError("UPDATE", {}, Exception("unable to open database file")))

    class _PgError(Exception):
        sqlstate = "40P01"

    assert is_conflict(DBAPIError("UPDATE", {}, _PgError()))
    assert not is_conflict(IntegrityError("INSERT", {}, Exception("duplicate key")))


async def test_store_outage_is_not_reported_as_conflict(
    monkeypatch, session_maker, make_item, stock_of, movement_count
):
    item = await make_item("SKU001", 10)

    async def unreachable(self, *args, **kwargs):
        raise OperationalError("UPDATE inventory_items", {}, Exception("connection refused"))

    monkeypatch.setattr(StockDeductionService, "_apply_delta", unreachable)

    async with session_maker() as s:
        with pytest.raises(OperationalError):
            await StockDeductionService(s).deduct(item.id, 1)

    assert await stock_of(item.id) == 10
    assert await movement_count() == 0


async def test_composite_movements_keep_parent_name_with_custom_reason(session_maker, make_item, make_composite):
    a = await make_item("COMP-A", 10)
    kit = await make_composite("KIT", [(a, 1)], name="Gift box")

    async with session_maker() as s:
        await StockDeductionService(s).deduct(kit.id, 1, DeductionContext(reason="Wholesale"))

    [row] = await _movements_for(session_maker, a.id)
    assert row.reason == "Wholesale - component consumption for Gift box"


async def test_simple_item_uses_custom_reason_as_is(session_maker, make_item):
    item = await make_item("SKU001", 10)

    async with session_maker() as s:
        await StockDeductionService(s).deduct(item.id, 1, DeductionContext(reason="Wholesale"))

    [row] = await _movements_for(session_maker, item.id)
    assert row.reason == "Wholesale"
