from pydantic import BaseModel, Field

from cardshop.core.enums import CardCondition, CardRarity


class InventoryItemRead(BaseModel):
    card_id: int
    card_name: str
    rarity: CardRarity
    condition: CardCondition
    unit_value: int
    quantity: int


class InventoryRead(BaseModel):
    user_id: int
    total_cards: int
    total_value: int
    items: list[InventoryItemRead]


class InventoryStats(BaseModel):
    user_id: int
    total_cards: int = Field(description="Total number of card copies owned")
    unique_cards: int = Field(description="Number of distinct cards owned")
    total_value: int
    value_by_rarity: dict[CardRarity, int]
