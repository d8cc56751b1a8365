import sqlmodel

from cardshop.core.enums import CardCondition

from ._base import BaseModel


class UserInventory(BaseModel, table=True):
    """A user's card collection.

    ``total_cards`` and ``total_value`` cache the sums over the inventory items
    and are only adjusted together with the items they summarize.
    """

    __tablename__: str = "user_inventories"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True, unique=True)
    total_cards: int = sqlmodel.Field(default=0, ge=0)
    total_value: int = sqlmodel.Field(default=0, ge=0)


class UserInventoryItem(BaseModel, table=True):
    __tablename__: str = "user_inventory_items"
    __table_args__ = (
        sqlmodel.UniqueConstraint(
            "inventory_id", "card_id", "condition", "unit_value", name="uq_inventory_item"
        ),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    inventory_id: int = sqlmodel.Field(foreign_key="user_inventories.id", index=True)
    card_id: int = sqlmodel.Field(foreign_key="cards.id", index=True)
    condition: CardCondition = CardCondition.MINT
    unit_value: int = sqlmodel.Field(ge=0)
    """Snapshot value of each copy when it was obtained"""
    quantity: int = sqlmodel.Field(default=0, ge=0)

    @property
    def value(self) -> int:
        return self.quantity * self.unit_value
