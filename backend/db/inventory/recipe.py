import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import relationship

from ..database import Base


class RecipeComponent(Base):
    __tablename__ = "inventory_recipe_components"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_recipe_component_quantity_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    composite_item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    component_item_id = Column(Uuid, ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Amount of the component consumed per one unit of the composite
    quantity = Column(Numeric(14, 3), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    composite_item = relationship(
        "InventoryItem", foreign_keys=[composite_item_id], back_populates="recipe_components"
    )
    component_item = relationship("InventoryItem", foreign_keys=[component_item_id])
