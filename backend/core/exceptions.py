"""Errors raised by the stock ledger services.

Expected read-side conditions (unknown item, missing recipe, short stock) are
reported inside result objects instead; only the cases below are raised.
"""

from decimal import Decimal
from uuid import UUID


class LedgerError(Exception):
    """Base class for stock ledger errors."""


class ItemNotFound(LedgerError):
    def __init__(self, item_id: UUID):
        self.item_id = item_id
        super().__init__(f"Inventory item {item_id} not found")


class CompositeItemError(LedgerError):
    """Raised when an operation needs an item's own stock but the item is composite."""

    def __init__(self, item_id: UUID, name: str):
        self.item_id = item_id
        self.name = name
        super().__init__(
            f"'{name}' is a composite item and has no stock of its own; adjust its components instead"
        )


class NegativeStockError(LedgerError):
    def __init__(self, item_id: UUID, current_stock: Decimal, delta: Decimal):
        self.item_id = item_id
        self.current_stock = current_stock
        self.delta = delta
        super().__init__(
            f"Stock cannot go negative. Current stock: {current_stock}, adjustment: {delta}"
        )


class TransactionConflict(LedgerError):
    """The store could not commit because of a concurrent writer.

    Nothing was persisted; the caller may retry with backoff.
    """
