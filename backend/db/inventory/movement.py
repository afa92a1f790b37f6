import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MovementType(str, enum.Enum):
    SALE = "SALE"
    ADJUSTMENT_PLUS = "ADJUSTMENT_PLUS"
    ADJUSTMENT_MINUS = "ADJUSTMENT_MINUS"
    RECEIPT = "RECEIPT"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    RECIPE_OUT = "RECIPE_OUT"


class StockMovement(Base):
    """Append-only. new_stock == previous_stock + quantity for every row."""

    __tablename__ = "inventory_stock_movements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(Enum(MovementType, name="movement_type", native_enum=False), nullable=False, index=True)
    quantity = Column(Numeric(14, 3), nullable=False)  # signed delta
    previous_stock = Column(Numeric(14, 3), nullable=False)
    new_stock = Column(Numeric(14, 3), nullable=False)

    order_id = Column(String, nullable=True, index=True)
    invoice_id = Column(String, nullable=True, index=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    user_id = Column(String, nullable=True)
    user_name = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)

    item = relationship("InventoryItem", back_populates="movements")
