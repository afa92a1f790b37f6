"""
Stock ledger models.

Models:
- InventoryItem (simple stock counter, or composite assembled from a recipe)
- RecipeComponent (one recipe line of a composite item)
- StockMovement (append-only audit trail of every balance change)
- StockDeduction (one row per deducted item/order/invoice, for idempotency)
"""

from .item import InventoryItem
from .recipe import RecipeComponent
from .movement import MovementType, StockMovement
from .deduction import StockDeduction

__all__ = ["InventoryItem", "RecipeComponent", "MovementType", "StockMovement", "StockDeduction"]
