"""
Read-only mirrors of the order system's tables.

The ledger never writes these; it only uses them to map order lines to
inventory items.
"""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from .database import Base


class CatalogProduct(Base):
    """Sellable catalog product, optionally mapped to a ledger item."""

    __tablename__ = "catalog_products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sku = Column(String, nullable=False, unique=True, index=True)
    title = Column(String, nullable=False)
    inventory_item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="SET NULL"), nullable=True, index=True)

    inventory_item = relationship("InventoryItem")


class OrderLineItem(Base):
    __tablename__ = "order_line_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(String, nullable=False, index=True)
    line_number = Column(Integer, nullable=False, default=0)
    sku = Column(String, nullable=True)
    title = Column(String, nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
