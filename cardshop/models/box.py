import sqlmodel

from cardshop.core.enums import Currency

from ._base import BaseModel


class Box(BaseModel, table=True):
    __tablename__: str = "boxes"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    name: str = sqlmodel.Field(max_length=100, index=True)
    card_set_id: int = sqlmodel.Field(foreign_key="card_sets.id", index=True)
    pack_id: int = sqlmodel.Field(foreign_key="packs.id", index=True)
    """Pack definition every booster in the box follows"""
    packs_per_box: int = sqlmodel.Field(ge=1)
    price_per_box: int = sqlmodel.Field(default=0, ge=0)
    currency: Currency = Currency.USD
    is_available: bool = True
