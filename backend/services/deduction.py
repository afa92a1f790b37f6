"""Stock Deduction Service - mutates on-hand balances and writes the audit trail.

Flow for ``deduct``:
1. Load the item and (for composites) its recipe.
2. Optionally record an idempotency row for (item, order, invoice).
3. For the item itself, or every recipe component scaled by the requested
   quantity, run one ``UPDATE ... SET current_stock = current_stock - n
   RETURNING current_stock``. The database applies the arithmetic, so
   concurrent deductions against the same row serialize on its lock and no
   update is lost.
4. Append one StockMovement per mutated item.
5. Commit once. Any failure rolls back every balance change and movement.

The service never retries on its own; a TransactionConflict goes back to the
caller, who holds the order/invoice context needed to retry safely.
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import CompositeItemError, ItemNotFound, NegativeStockError, TransactionConflict
from db.inventory import InventoryItem, MovementType, StockDeduction, StockMovement
from schemas.inventory import (
    AdjustmentResult,
    DeductionContext,
    DeductionResult,
    MovementSummary,
    OrderDeductionResult,
    StockAdjustmentCreate,
    StockMovementOut,
)
from services.availability import load_item_with_recipe
from services.orders import load_order_lines, resolve_catalog_skus

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def _dec(x) -> Decimal:
    return Decimal(str(x)) if x is not None else Decimal("0")


def is_conflict(exc: DBAPIError) -> bool:
    """True for lock/serialization failures that are safe to retry.

    A lost connection or an unreachable store is an OperationalError too, but
    not a conflict; those propagate unchanged.
    """
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in CONFLICT_SQLSTATES:
        return True
    # SQLite reports lock contention only through the message
    return isinstance(exc, OperationalError) and any(m in str(orig).lower() for m in SQLITE_LOCK_MESSAGES)


class _StockFloorHit(Exception):
    def __init__(self, item_id: UUID, sku: str, amount: Decimal):
        self.item_id = item_id
        self.sku = sku
        self.amount = amount


class StockDeductionService:
    """Applies stock deductions and adjustments atomically.

    Each public method owns the session's transaction: it commits on success
    and rolls back on failure.
    """

    def __init__(self, db: AsyncSession, enforce_idempotency: Optional[bool] = None):
        self.db = db
        if enforce_idempotency is None:
            enforce_idempotency = settings.enforce_deduction_idempotency
        self.enforce_idempotency = enforce_idempotency

    async def _apply_delta(
        self, item_id: UUID, sku: str, delta: Decimal, *, guard_floor: bool
    ) -> Tuple[Decimal, Decimal]:
        """Add ``delta`` to the live balance. Returns (previous_stock, new_stock)."""
        tbl = InventoryItem.__table__
        stmt = (
            update(tbl)
            .where(tbl.c.id == item_id)
            .values(current_stock=tbl.c.current_stock + delta)
            .returning(tbl.c.current_stock)
        )
        if guard_floor:
            stmt = stmt.where(tbl.c.current_stock + delta >= 0)

        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise _StockFloorHit(item_id, sku, -delta)

        new_stock = _dec(row.current_stock)
        return new_stock - delta, new_stock

    def _add_movement(
        self,
        *,
        item_id: UUID,
        movement_type: MovementType,
        delta: Decimal,
        previous_stock: Decimal,
        new_stock: Decimal,
        reason: Optional[str],
        notes: Optional[str] = None,
        order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> StockMovement:
        movement = StockMovement(
            item_id=item_id,
            type=movement_type,
            quantity=delta,
            previous_stock=previous_stock,
            new_stock=new_stock,
            order_id=order_id,
            invoice_id=invoice_id,
            reason=reason,
            notes=notes,
            user_id=user_id,
            user_name=user_name,
        )
        self.db.add(movement)
        return movement

    async def deduct(
        self,
        item_id: UUID,
        quantity,
        context: Optional[DeductionContext] = None,
    ) -> DeductionResult:
        ctx = context or DeductionContext()
        qty = _dec(quantity)
        if qty <= 0:
            raise ValueError("quantity must be > 0")

        item = await load_item_with_recipe(self.db, item_id)
        if item is None:
            logger.warning("Deduction rejected: item %s not found", item_id)
            return DeductionResult(success=False, error="Item not found")

        item_name = item.name
        if item.is_composite and not item.recipe_components:
            logger.warning("Deduction rejected: composite %s (%s) has no recipe", item.sku, item.id)
            return DeductionResult(
                success=False, error=f"Composite item '{item_name}' has no recipe defined"
            )

        # (target id, sku, amount, reason) in recipe order
        plan: List[Tuple[UUID, str, Decimal, str]] = []
        if not item.is_composite:
            plan.append((item.id, item.sku, qty, ctx.reason or "Sale"))
        else:
            for comp in item.recipe_components:
                plan.append((
                    comp.component_item.id,
                    comp.component_item.sku,
                    _dec(comp.quantity) * qty,
                    f"{ctx.reason or 'Sale'} - component consumption for {item_name}",
                ))

        try:
            if self.enforce_idempotency and (ctx.order_id or ctx.invoice_id):
                self.db.add(
                    StockDeduction(
                        item_id=item.id,
                        order_ref=ctx.order_id or "",
                        invoice_ref=ctx.invoice_id or "",
                        quantity=qty,
                    )
                )
                try:
                    await self.db.flush()
                except IntegrityError:
                    await self.db.rollback()
                    logger.warning(
                        "Deduction rejected: %s already deducted for order=%s invoice=%s",
                        item_id, ctx.order_id, ctx.invoice_id,
                    )
                    return DeductionResult(
                        success=False,
                        error=f"Stock for '{item_name}' was already deducted for this order/invoice",
                    )

            # Lock rows in id order; movements below keep recipe order
            applied: Dict[int, Tuple[Decimal, Decimal]] = {}
            for idx in sorted(range(len(plan)), key=lambda i: str(plan[i][0])):
                target_id, sku, amount, _reason = plan[idx]
                applied[idx] = await self._apply_delta(
                    target_id, sku, -amount, guard_floor=not ctx.allow_negative
                )

            movements: List[MovementSummary] = []
            for idx, (target_id, sku, amount, reason) in enumerate(plan):
                previous_stock, new_stock = applied[idx]
                self._add_movement(
                    item_id=target_id,
                    movement_type=ctx.movement_type,
                    delta=-amount,
                    previous_stock=previous_stock,
                    new_stock=new_stock,
                    reason=reason,
                    order_id=ctx.order_id,
                    invoice_id=ctx.invoice_id,
                    user_id=ctx.user_id,
                    user_name=ctx.user_name,
                )
                movements.append(
                    MovementSummary(
                        item_id=target_id,
                        sku=sku,
                        quantity=-amount,
                        previous_stock=previous_stock,
                        new_stock=new_stock,
                    )
                )

            await self.db.commit()
        except _StockFloorHit as e:
            await self.db.rollback()
            logger.warning("Deduction rejected: %s cannot cover %s", e.sku, e.amount)
            return DeductionResult(
                success=False, error=f"Insufficient stock for {e.sku}: need {e.amount}"
            )
        except DBAPIError as e:
            await self.db.rollback()
            if is_conflict(e):
                logger.warning("Deduction for %s hit a concurrent writer; rolled back", item_id)
                raise TransactionConflict(f"Concurrent update while deducting {item_name}") from e
            logger.exception("Deduction for %s failed; rolled back", item_id)
            raise
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Deduction for %s failed; rolled back", item_id)
            raise

        for m in movements:
            logger.info("Deducted %s: %s -> %s (%s)", m.sku, m.previous_stock, m.new_stock, m.quantity)
        return DeductionResult(success=True, movements=movements)

    async def adjust_stock(self, item_id: UUID, payload: StockAdjustmentCreate) -> AdjustmentResult:
        res = await self.db.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = res.scalar_one_or_none()
        if item is None:
            raise ItemNotFound(item_id)
        if item.is_composite:
            raise CompositeItemError(item.id, item.name)

        sku = item.sku
        snapshot = _dec(item.current_stock)
        is_plus = payload.type == MovementType.ADJUSTMENT_PLUS
        delta = abs(_dec(payload.quantity)) if is_plus else -abs(_dec(payload.quantity))

        try:
            previous_stock, new_stock = await self._apply_delta(item_id, sku, delta, guard_floor=True)
            movement = self._add_movement(
                item_id=item_id,
                movement_type=payload.type,
                delta=delta,
                previous_stock=previous_stock,
                new_stock=new_stock,
                reason=payload.reason or ("Positive adjustment" if is_plus else "Negative adjustment"),
                notes=payload.notes,
                user_id=payload.user_id,
                user_name=payload.user_name,
            )
            await self.db.flush()
            out = StockMovementOut.model_validate(movement)
            await self.db.commit()
        except _StockFloorHit:
            await self.db.rollback()
            raise NegativeStockError(item_id, snapshot, delta)
        except DBAPIError as e:
            await self.db.rollback()
            if is_conflict(e):
                raise TransactionConflict(f"Concurrent update while adjusting {sku}") from e
            raise

        logger.info("Adjusted %s by %s: %s -> %s", sku, delta, previous_stock, new_stock)
        verb = "increased" if is_plus else "decreased"
        return AdjustmentResult(
            item_id=item_id,
            sku=sku,
            movement=out,
            message=f"Stock {verb} by {abs(delta)} units",
        )

    async def deduct_for_order(
        self,
        order_id: str,
        invoice_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> OrderDeductionResult:
        """Deduct stock for every mapped line of an order, one ledger item at a time.

        Lines mapping to the same ledger item are merged first. Each item is
        deducted in its own transaction; a failed item is reported in
        ``errors`` and does not stop the rest.
        """
        result = OrderDeductionResult(success=True)
        lines, unusable = await load_order_lines(self.db, order_id)
        mapping = await resolve_catalog_skus(self.db, [l.sku for l in lines if l.sku])

        logger.info(
            "Processing inventory stock for order %s (invoice %s): %d line(s)",
            order_id, invoice_id, len(lines) + len(unusable),
        )
        for line in unusable:
            logger.info("Line '%s' has a non-positive quantity - skipped", line.title)
        result.skipped += len(unusable)

        grouped: "OrderedDict[UUID, dict]" = OrderedDict()
        for line in lines:
            if not line.sku:
                logger.info("Line '%s' has no SKU - skipped", line.title)
                result.skipped += 1
                continue
            if line.sku not in mapping:
                logger.info("SKU %s is not in the catalog - skipped", line.sku)
                result.skipped += 1
                continue
            item_id = mapping[line.sku]
            if item_id is None:
                logger.info("SKU %s is not mapped to an inventory item - skipped", line.sku)
                result.skipped += 1
                continue
            entry = grouped.setdefault(item_id, {"sku": line.sku, "quantity": Decimal("0"), "titles": []})
            entry["quantity"] += _dec(line.quantity)
            entry["titles"].append(line.title)

        for item_id, entry in grouped.items():
            ctx = DeductionContext(
                order_id=order_id,
                invoice_id=invoice_id,
                reason=f"Sale - order {order_id}, product: {', '.join(entry['titles'])}",
                user_id=user_id,
                user_name=user_name,
            )
            try:
                outcome = await self.deduct(item_id, entry["quantity"], ctx)
            except TransactionConflict as e:
                result.errors.append(f"{entry['sku']}: {e}")
                continue

            if not outcome.success:
                result.errors.append(f"{entry['sku']}: {outcome.error}")
                continue
            result.movements.extend(outcome.movements)
            result.processed += 1

        result.success = len(result.errors) == 0
        logger.info(
            "Order %s: %d processed, %d skipped, %d error(s)",
            order_id, result.processed, result.skipped, len(result.errors),
        )
        return result
