from pydantic import BaseModel, Field

from cardshop.core.enums import CardRarity, CardSetStatus


class RarityWeight(BaseModel):
    rarity: CardRarity
    weight: float = Field(ge=0, allow_inf_nan=False)


class RarityWeightsUpdate(BaseModel):
    weights: list[RarityWeight] = Field(min_length=1)


class CardSetRead(BaseModel):
    id: int
    name: str
    status: CardSetStatus
    non_repeating: bool
    weights: dict[CardRarity, float]
