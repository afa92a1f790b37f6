from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db.inventory.movement import MovementType


ADJUSTMENT_TYPES = (MovementType.ADJUSTMENT_PLUS, MovementType.ADJUSTMENT_MINUS)


class StockIssue(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NO_RECIPE = "NO_RECIPE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


# ----- availability -----

class InsufficientComponent(BaseModel):
    component_id: UUID
    component_sku: str
    component_name: str
    required_quantity: Decimal
    available_stock: Decimal
    shortage: Decimal


class StockCheckResult(BaseModel):
    item_id: UUID
    sku: str
    name: str
    is_composite: bool
    has_recipe: bool
    can_fulfill: bool
    available_quantity: Decimal
    requested_quantity: Decimal
    insufficient_components: List[InsufficientComponent] = []
    issue: Optional[StockIssue] = None


class LimitingComponent(BaseModel):
    id: UUID
    sku: str
    name: str
    current_stock: Decimal
    required_per_unit: Decimal


class ProductionCapacity(BaseModel):
    item_id: UUID
    sku: str
    name: str
    can_produce: int
    limiting_component: Optional[LimitingComponent] = None


# ----- order aggregation -----

class OrderLine(BaseModel):
    inventory_item_id: UUID
    quantity: Decimal = Field(gt=0)


class CatalogLine(BaseModel):
    sku: Optional[str] = None
    title: str = ""
    quantity: Decimal = Field(gt=0)

    @field_validator("sku")
    @classmethod
    def _strip_sku(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class UnmappedProduct(BaseModel):
    sku: str
    title: str


class OrderStockCheck(BaseModel):
    can_fulfill: bool
    results: List[StockCheckResult]
    insufficient_items: List[StockCheckResult]


class CatalogOrderStockCheck(OrderStockCheck):
    unmapped_products: List[UnmappedProduct]


# ----- deduction -----

class DeductionContext(BaseModel):
    order_id: Optional[str] = None
    invoice_id: Optional[str] = None
    reason: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    movement_type: MovementType = MovementType.SALE
    # When False the balance may not drop below zero; checked inside the transaction.
    allow_negative: bool = True

    @field_validator("order_id", "invoice_id", "reason", "user_id", "user_name")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class DeductRequest(DeductionContext):
    quantity: Decimal = Field(gt=0)


class MovementSummary(BaseModel):
    item_id: UUID
    sku: str
    quantity: Decimal
    previous_stock: Decimal
    new_stock: Decimal


class DeductionResult(BaseModel):
    success: bool
    movements: List[MovementSummary] = []
    error: Optional[str] = None


class OrderDeductRequest(BaseModel):
    invoice_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class OrderDeductionResult(BaseModel):
    success: bool
    processed: int = 0
    skipped: int = 0
    errors: List[str] = []
    movements: List[MovementSummary] = []


# ----- adjustments / history -----

class StockAdjustmentCreate(BaseModel):
    type: MovementType
    quantity: Decimal
    reason: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    @field_validator("type")
    @classmethod
    def _adjustment_type(cls, v: MovementType) -> MovementType:
        if v not in ADJUSTMENT_TYPES:
            raise ValueError("type must be ADJUSTMENT_PLUS or ADJUSTMENT_MINUS")
        return v

    @field_validator("quantity")
    @classmethod
    def _quantity_nonzero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("quantity must be non-zero")
        return v

    @field_validator("reason", "notes", "user_id", "user_name")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    item_id: UUID
    type: MovementType
    quantity: Decimal
    previous_stock: Decimal
    new_stock: Decimal
    order_id: Optional[str] = None
    invoice_id: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class MovementPage(BaseModel):
    movements: List[StockMovementOut]
    pagination: Pagination


class MovementFilter(BaseModel):
    item_id: Optional[UUID] = None
    type: Optional[MovementType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=500)


class ReconciliationResult(BaseModel):
    item_id: UUID
    sku: str
    current_stock: Decimal
    opening_stock: Decimal
    ledger_balance: Decimal
    movement_count: int
    is_balanced: bool
    inconsistent_movement_ids: List[UUID] = []


class AdjustmentResult(BaseModel):
    item_id: UUID
    sku: str
    movement: StockMovementOut
    message: str


# ----- reorder -----

class LowStockAlert(BaseModel):
    id: UUID
    sku: str
    name: str
    current_stock: Decimal
    min_stock: Decimal
    shortage: Decimal
    unit: str
