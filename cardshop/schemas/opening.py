import datetime

from pydantic import BaseModel, Field

from cardshop.core.enums import CardRarity


class OpeningRequestBody(BaseModel):
    """Body of an open-pack or open-box request."""

    request_id: str = Field(
        min_length=1, max_length=100, description="Client-generated id; retries reuse it"
    )


class DrawnCardRead(BaseModel):
    card_id: int
    rarity: CardRarity
    is_holo: bool
    value: int = Field(description="Value of the card when it was drawn")


class PackOpeningRead(BaseModel):
    id: int
    user_id: int
    pack_id: int
    card_set_id: int
    transaction_id: int
    cards_obtained: list[DrawnCardRead]
    total_value: int
    rarity_breakdown: dict[CardRarity, int]
    timestamp: datetime.datetime


class BoxOpeningRead(BaseModel):
    id: int
    user_id: int
    box_id: int
    transaction_id: int
    packs_opened: list[PackOpeningRead]
    total_cards_obtained: int
    total_value: int
    timestamp: datetime.datetime
