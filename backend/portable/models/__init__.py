"""ORM models. Importing this package registers every table on Base.metadata."""

from portable.models.profile import Profile
from portable.models.item import Item
from portable.models.topic import Topic, ItemTopic

__all__ = ["Profile", "Item", "Topic", "ItemTopic"]
