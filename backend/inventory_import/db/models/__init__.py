"""Database models package."""
from inventory_import.db.models.inventory_item import InventoryItem

__all__ = ["InventoryItem"]
