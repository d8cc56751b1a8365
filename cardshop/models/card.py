import sqlmodel

from cardshop.core.enums import CardRarity

from ._base import BaseModel


class Card(BaseModel, table=True):
    __tablename__: str = "cards"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    card_set_id: int = sqlmodel.Field(foreign_key="card_sets.id", index=True)
    name: str = sqlmodel.Field(max_length=100, index=True)
    card_number: str = sqlmodel.Field(default="", max_length=16)
    rarity: CardRarity
    is_holo: bool = False
    price: int = sqlmodel.Field(default=0, ge=0)
    """Current catalog value in minor currency units"""

    def __str__(self) -> str:
        return f"{self.name} (#{self.id})"
