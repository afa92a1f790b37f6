from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CompositeItemError, ItemNotFound, NegativeStockError, TransactionConflict
from db.database import get_async_session
from db.inventory import MovementType
from schemas.inventory import (
    AdjustmentResult,
    CatalogOrderStockCheck,
    DeductionContext,
    DeductionResult,
    DeductRequest,
    LowStockAlert,
    MovementFilter,
    MovementPage,
    OrderDeductionResult,
    OrderDeductRequest,
    OrderLine,
    OrderStockCheck,
    ProductionCapacity,
    ReconciliationResult,
    StockAdjustmentCreate,
    StockCheckResult,
)
from services.alerts import StockAlertService
from services.availability import StockAvailabilityService
from services.deduction import StockDeductionService
from services.movements import StockMovementService
from services.orders import OrderStockService

router = APIRouter()


@router.get("/items/{item_id}/stock-check", response_model=StockCheckResult)
async def check_item_stock(
    item_id: UUID,
    quantity: Decimal = Query(..., ge=0),
    db: AsyncSession = Depends(get_async_session),
):
    return await StockAvailabilityService(db).check_item_stock(item_id, quantity)


@router.get("/items/{item_id}/production-capacity", response_model=ProductionCapacity)
async def get_production_capacity(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return await StockAvailabilityService(db).production_capacity(item_id)


@router.post("/stock-check", response_model=OrderStockCheck)
async def check_order_stock(
    lines: List[OrderLine],
    db: AsyncSession = Depends(get_async_session),
):
    return await OrderStockService(db).check_order(lines)


@router.get("/orders/{order_id}/stock-check", response_model=CatalogOrderStockCheck)
async def check_order_stock_by_products(
    order_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    return await OrderStockService(db).check_order_by_catalog_refs(order_id)


@router.post("/items/{item_id}/deduct", response_model=DeductionResult)
async def deduct_item_stock(
    item_id: UUID,
    payload: DeductRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Deduct stock for one ledger item (simple or composite).

    - 409 when a concurrent writer forced a rollback; nothing was applied and the call can be retried.
    - 400 when the deduction was rejected (unknown item, missing recipe, duplicate, short stock).
    """
    context = DeductionContext(**payload.model_dump(exclude={"quantity"}))
    try:
        result = await StockDeductionService(db).deduct(item_id, payload.quantity, context)
    except TransactionConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result


@router.post("/orders/{order_id}/deduct", response_model=OrderDeductionResult)
async def deduct_order_stock(
    order_id: str,
    payload: OrderDeductRequest,
    db: AsyncSession = Depends(get_async_session),
):
    return await StockDeductionService(db).deduct_for_order(
        order_id,
        invoice_id=payload.invoice_id,
        user_id=payload.user_id,
        user_name=payload.user_name,
    )


@router.post("/items/{item_id}/adjust", response_model=AdjustmentResult, status_code=status.HTTP_201_CREATED)
async def adjust_item_stock(
    item_id: UUID,
    payload: StockAdjustmentCreate,
    db: AsyncSession = Depends(get_async_session),
):
    try:
        return await StockDeductionService(db).adjust_stock(item_id, payload)
    except ItemNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (CompositeItemError, NegativeStockError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransactionConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/low-stock-alerts", response_model=List[LowStockAlert])
async def get_low_stock_alerts(db: AsyncSession = Depends(get_async_session)):
    return await StockAlertService(db).low_stock_alerts()


@router.get("/movements", response_model=MovementPage)
async def list_stock_movements(
    item_id: Optional[UUID] = None,
    type: Optional[MovementType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
):
    filters = MovementFilter(
        item_id=item_id,
        type=type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return await StockMovementService(db).list_movements(filters)


@router.get("/items/{item_id}/reconcile", response_model=ReconciliationResult)
async def reconcile_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    try:
        return await StockMovementService(db).reconcile(item_id)
    except ItemNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
