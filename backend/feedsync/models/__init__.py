from .feed import Feed
from .item import Item
from .preference import Preference

__all__ = ["Feed", "Item", "Preference"]
