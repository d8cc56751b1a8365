from typing import Any

import sqlmodel

from cardshop.core.enums import ProductType

from ._base import BaseModel


class BoxOpeningResult(BaseModel, table=True):
    __tablename__: str = "box_opening_results"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    box_id: int = sqlmodel.Field(foreign_key="boxes.id", index=True)
    transaction_id: int = sqlmodel.Field(foreign_key="transactions.id", index=True)
    total_cards_obtained: int = sqlmodel.Field(ge=0)
    total_value: int = sqlmodel.Field(ge=0)


class PackOpeningResult(BaseModel, table=True):
    __tablename__: str = "pack_opening_results"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    pack_id: int = sqlmodel.Field(foreign_key="packs.id", index=True)
    card_set_id: int = sqlmodel.Field(foreign_key="card_sets.id", index=True)
    transaction_id: int = sqlmodel.Field(foreign_key="transactions.id", index=True)
    box_opening_id: int | None = sqlmodel.Field(
        foreign_key="box_opening_results.id", index=True, nullable=True, default=None
    )
    position: int = 0
    """Order of the pack inside its box"""
    cards: list[dict[str, Any]] = sqlmodel.Field(sa_column=sqlmodel.Column(sqlmodel.JSON))
    """Drawn cards in slot order: card_id, rarity, is_holo, value"""
    total_value: int = sqlmodel.Field(ge=0)
    rarity_breakdown: dict[str, int] = sqlmodel.Field(sa_column=sqlmodel.Column(sqlmodel.JSON))


class OpeningRequest(BaseModel, table=True):
    """Dedup record of a committed opening, keyed by the caller's request id."""

    __tablename__: str = "opening_requests"

    request_id: str = sqlmodel.Field(primary_key=True, max_length=100)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    kind: ProductType
    product_id: int
    transaction_id: int = sqlmodel.Field(foreign_key="transactions.id")
    pack_result_id: int | None = sqlmodel.Field(
        foreign_key="pack_opening_results.id", nullable=True, default=None
    )
    box_result_id: int | None = sqlmodel.Field(
        foreign_key="box_opening_results.id", nullable=True, default=None
    )
