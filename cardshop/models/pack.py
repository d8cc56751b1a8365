import sqlmodel

from cardshop.core.enums import Currency, PackType

from ._base import BaseModel


class Pack(BaseModel, table=True):
    __tablename__: str = "packs"
    __table_args__ = (
        sqlmodel.CheckConstraint(
            "guaranteed_rares + guaranteed_holos <= cards_per_pack", name="guarantees_fit_in_pack"
        ),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    name: str = sqlmodel.Field(max_length=100, index=True)
    type: PackType = PackType.BOOSTER
    card_set_id: int = sqlmodel.Field(foreign_key="card_sets.id", index=True)
    cards_per_pack: int = sqlmodel.Field(ge=0)
    guaranteed_rares: int = sqlmodel.Field(default=0, ge=0)
    guaranteed_holos: int = sqlmodel.Field(default=0, ge=0)
    price: int = sqlmodel.Field(default=0, ge=0)
    currency: Currency = Currency.USD
    is_available: bool = True
