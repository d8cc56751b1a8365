import datetime

import sqlmodel

from cardshop.core.enums import CardRarity, CardSetStatus

from ._base import BaseModel


class CardSet(BaseModel, table=True):
    __tablename__: str = "card_sets"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    name: str = sqlmodel.Field(max_length=100, index=True)
    symbol: str = sqlmodel.Field(default="", max_length=16)
    status: CardSetStatus = CardSetStatus.DRAFT
    non_repeating: bool = False
    """Guaranteed slots draw distinct cards within a pack"""
    activated_at: datetime.datetime | None = sqlmodel.Field(
        default=None, sa_type=sqlmodel.DateTime(timezone=True)
    )

    @property
    def is_active(self) -> bool:
        return self.status == CardSetStatus.ACTIVE


class CardSetRarity(BaseModel, table=True):
    """Draw weight of one rarity within a card set. Frozen once the set is active."""

    __tablename__: str = "card_set_rarities"
    __table_args__ = (
        sqlmodel.UniqueConstraint("card_set_id", "rarity", name="uq_card_set_rarity"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    card_set_id: int = sqlmodel.Field(foreign_key="card_sets.id", index=True)
    rarity: CardRarity
    weight: float = sqlmodel.Field(default=0.0, ge=0.0)
