from collections.abc import Mapping, Sequence
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.enums import CardRarity, CardSetStatus
from cardshop.core.exceptions import NotFoundError, ValidationError
from cardshop.engine.draw import DrawEngine
from cardshop.engine.pack_spec import PackSpec
from cardshop.engine.rarity_table import CardRef, RarityTable
from cardshop.models.card import Card
from cardshop.models.card_set import CardSet, CardSetRarity
from cardshop.models.pack import Pack
from cardshop.utils.misc import get_utc_now


class CardSetService:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def get_card_set(self, card_set_id: int) -> CardSet | None:
        result = await self.db.exec(select(CardSet).where(CardSet.id == card_set_id))
        return result.first()

    async def require_card_set(self, card_set_id: int) -> CardSet:
        card_set = await self.get_card_set(card_set_id)
        if not card_set:
            raise NotFoundError("Card set not found", resource="card_set", identifier=card_set_id)
        return card_set

    async def get_weights(self, card_set_id: int) -> dict[CardRarity, float]:
        result = await self.db.exec(
            select(CardSetRarity).where(CardSetRarity.card_set_id == card_set_id)
        )
        return {CardRarity(row.rarity): row.weight for row in result.all()}

    async def set_weights(
        self, card_set_id: int, weights: Mapping[CardRarity, float]
    ) -> dict[CardRarity, float]:
        """Replace the draw weights of a draft card set."""
        card_set = await self.require_card_set(card_set_id)
        if card_set.status != CardSetStatus.DRAFT:
            raise ValidationError(
                f"Rarity weights of card set {card_set_id} are frozen ({card_set.status})"
            )

        result = await self.db.exec(
            select(CardSetRarity).where(CardSetRarity.card_set_id == card_set_id)
        )
        existing = {CardRarity(row.rarity): row for row in result.all()}

        for rarity, weight in weights.items():
            row = existing.get(rarity) or CardSetRarity(card_set_id=card_set_id, rarity=rarity)
            row.weight = weight
            self.db.add(row)

        await self.db.commit()
        return await self.get_weights(card_set_id)

    async def get_card_refs(self, card_set_id: int) -> Sequence[CardRef]:
        result = await self.db.exec(select(Card).where(Card.card_set_id == card_set_id))
        return [
            CardRef(card_id=card.id, rarity=CardRarity(card.rarity), is_holo=card.is_holo)
            for card in result.all()
        ]

    async def get_pack_specs(self, card_set_id: int) -> list[PackSpec]:
        result = await self.db.exec(select(Pack).where(Pack.card_set_id == card_set_id))
        return [PackSpec.from_pack(pack) for pack in result.all()]

    async def build_rarity_table(
        self, card_set: CardSet, *, guarantees: Sequence[PackSpec] = ()
    ) -> RarityTable:
        return RarityTable.build(
            card_set.id,
            await self.get_weights(card_set.id),
            await self.get_card_refs(card_set.id),
            guarantees=guarantees,
            non_repeating=card_set.non_repeating,
        )

    async def get_rarity_table(self, card_set_id: int) -> RarityTable:
        """Rarity table of an active card set."""
        card_set = await self.require_card_set(card_set_id)
        if not card_set.is_active:
            raise ValidationError(f"Card set {card_set_id} is not active ({card_set.status})")
        return await self.build_rarity_table(card_set)

    async def activate_card_set(self, card_set_id: int) -> CardSet:
        """Validate the rarity table against every pack of the set and activate it.

        Boxes always follow one of those packs, so they need no check of their own.

        Raises:
            ValidationError: The table is invalid or a pack guarantee can't be met.
            InsufficientPoolError: A non-repeating guarantee is larger than its pool.
        """
        card_set = await self.require_card_set(card_set_id)
        if card_set.is_active:
            return card_set
        if card_set.status != CardSetStatus.DRAFT:
            raise ValidationError(f"Card set {card_set_id} can't be activated ({card_set.status})")

        specs = await self.get_pack_specs(card_set_id)
        engine = DrawEngine(await self.build_rarity_table(card_set, guarantees=specs))
        for spec in specs:
            engine.check(spec)

        card_set.status = CardSetStatus.ACTIVE
        card_set.activated_at = get_utc_now()
        self.db.add(card_set)
        await self.db.commit()
        await self.db.refresh(card_set)

        logger.info(f"Activated card set {card_set_id} ({len(specs)} packs checked)")
        return card_set
