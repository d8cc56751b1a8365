from collections.abc import Iterable
from typing import Annotated

from fastapi import Depends
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.exceptions import NotFoundError
from cardshop.models.card import Card


class PricingService:
    """Read-only lookups of current card values."""

    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def current_value(self, card_id: int) -> int:
        result = await self.db.exec(select(Card.price).where(Card.id == card_id))
        price = result.first()
        if price is None:
            raise NotFoundError("Card not found", resource="card", identifier=card_id)
        return price

    async def current_values(self, card_ids: Iterable[int]) -> dict[int, int]:
        ids = set(card_ids)
        if not ids:
            return {}

        result = await self.db.exec(select(Card.id, Card.price).where(col(Card.id).in_(sorted(ids))))
        return dict(result.all())

    async def current_set_values(self, card_set_id: int) -> dict[int, int]:
        result = await self.db.exec(
            select(Card.id, Card.price).where(Card.card_set_id == card_set_id)
        )
        return dict(result.all())
