import uuid

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sku = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    unit = Column(Text, nullable=False, default="pcs")

    # Authoritative only for simple items; composites are never decremented directly
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    min_stock = Column(Numeric(14, 3), nullable=True)

    is_composite = Column(Boolean, nullable=False, default=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    recipe_components = relationship(
        "RecipeComponent",
        foreign_keys="RecipeComponent.composite_item_id",
        back_populates="composite_item",
        order_by="RecipeComponent.sort_order",
        cascade="all, delete-orphan",
    )
    movements = relationship("StockMovement", back_populates="item", cascade="all, delete-orphan")
