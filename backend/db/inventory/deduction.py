import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from ..database import Base


class StockDeduction(Base):
    """One row per ledger item deducted for an order/invoice.

    Missing references are stored as "" so the unique constraint also
    catches repeats on backends that treat NULLs as distinct.
    """

    __tablename__ = "inventory_stock_deductions"
    __table_args__ = (
        UniqueConstraint("item_id", "order_ref", "invoice_ref", name="ux_stock_deduction_item_order_invoice"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    order_ref = Column(String, nullable=False, default="")
    invoice_ref = Column(String, nullable=False, default="")
    quantity = Column(Numeric(14, 3), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
