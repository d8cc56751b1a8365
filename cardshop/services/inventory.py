from collections.abc import Sequence
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.enums import CardCondition, CardRarity
from cardshop.core.exceptions import NotFoundError
from cardshop.models.card import Card
from cardshop.models.inventory import UserInventory, UserInventoryItem
from cardshop.models.user import User
from cardshop.schemas.inventory import InventoryItemRead, InventoryRead, InventoryStats


class InventoryService:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def get_user_inventory(self, user_id: int) -> UserInventory | None:
        result = await self.db.exec(select(UserInventory).where(UserInventory.user_id == user_id))
        return result.first()

    async def _require_inventory(self, user_id: int) -> UserInventory:
        user_result = await self.db.exec(select(User).where(User.id == user_id))
        user = user_result.first()
        if not user or user.is_deleted:
            raise NotFoundError("User not found", resource="user", identifier=user_id)

        inventory = await self.get_user_inventory(user_id)
        if inventory is None:
            # Users without openings have an empty collection.
            inventory = UserInventory(user_id=user_id)
        return inventory

    async def get_items(self, inventory_id: int) -> Sequence[tuple[UserInventoryItem, Card]]:
        result = await self.db.exec(
            select(UserInventoryItem, Card)
            .join(Card, col(Card.id) == UserInventoryItem.card_id)
            .where(UserInventoryItem.inventory_id == inventory_id)
            .order_by(col(UserInventoryItem.card_id), col(UserInventoryItem.unit_value))
        )
        return result.all()

    async def get_inventory(self, user_id: int) -> InventoryRead:
        inventory = await self._require_inventory(user_id)
        rows = await self.get_items(inventory.id) if inventory.id is not None else []

        return InventoryRead(
            user_id=user_id,
            total_cards=inventory.total_cards,
            total_value=inventory.total_value,
            items=[
                InventoryItemRead(
                    card_id=item.card_id,
                    card_name=card.name,
                    rarity=CardRarity(card.rarity),
                    condition=CardCondition(item.condition),
                    unit_value=item.unit_value,
                    quantity=item.quantity,
                )
                for item, card in rows
                if item.quantity > 0
            ],
        )

    async def get_inventory_stats(self, user_id: int) -> InventoryStats:
        inventory = await self._require_inventory(user_id)
        rows = await self.get_items(inventory.id) if inventory.id is not None else []

        value_by_rarity: dict[CardRarity, int] = dict.fromkeys(CardRarity, 0)
        unique_cards: set[int] = set()
        for item, card in rows:
            if item.quantity == 0:
                continue
            value_by_rarity[CardRarity(card.rarity)] += item.value
            unique_cards.add(item.card_id)

        return InventoryStats(
            user_id=user_id,
            total_cards=inventory.total_cards,
            unique_cards=len(unique_cards),
            total_value=inventory.total_value,
            value_by_rarity=value_by_rarity,
        )

    async def reconcile_totals(self, user_id: int) -> UserInventory:
        """Recompute the cached totals of a user's inventory from its items.

        Logs a warning when the cached totals had drifted.
        """
        inventory = await self.get_user_inventory(user_id)
        if inventory is None:
            raise NotFoundError("Inventory not found", resource="user_inventory", identifier=user_id)

        result = await self.db.exec(
            select(UserInventoryItem).where(UserInventoryItem.inventory_id == inventory.id)
        )
        items = result.all()
        total_cards = sum(item.quantity for item in items)
        total_value = sum(item.value for item in items)

        if (total_cards, total_value) != (inventory.total_cards, inventory.total_value):
            logger.warning(
                f"Inventory totals of user {user_id} drifted: "
                f"cached ({inventory.total_cards}, {inventory.total_value}), "
                f"actual ({total_cards}, {total_value})"
            )
            inventory.total_cards = total_cards
            inventory.total_value = total_value
            self.db.add(inventory)
            await self.db.commit()
            await self.db.refresh(inventory)

        return inventory
