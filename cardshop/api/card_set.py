from typing import Annotated

from fastapi import APIRouter, Depends

from cardshop.models.card_set import CardSet
from cardshop.schemas.card_set import CardSetRead, RarityWeightsUpdate
from cardshop.schemas.common import APIResponse
from cardshop.services.card_set import CardSetService

router = APIRouter(prefix="/card-sets", tags=["card-sets"])


async def _to_read(card_set: CardSet, service: CardSetService) -> CardSetRead:
    return CardSetRead(
        id=card_set.id,
        name=card_set.name,
        status=card_set.status,
        non_repeating=card_set.non_repeating,
        weights=await service.get_weights(card_set.id),
    )


@router.get("/{card_set_id}")
async def get_card_set(
    card_set_id: int, service: Annotated[CardSetService, Depends()]
) -> APIResponse[CardSetRead]:
    card_set = await service.require_card_set(card_set_id)
    return APIResponse(data=await _to_read(card_set, service))


@router.put("/{card_set_id}/rarities")
async def set_rarity_weights(
    card_set_id: int,
    update: RarityWeightsUpdate,
    service: Annotated[CardSetService, Depends()],
) -> APIResponse[CardSetRead]:
    await service.set_weights(card_set_id, {w.rarity: w.weight for w in update.weights})
    card_set = await service.require_card_set(card_set_id)
    return APIResponse(data=await _to_read(card_set, service), message="Rarity weights updated")


@router.post("/{card_set_id}/activate")
async def activate_card_set(
    card_set_id: int, service: Annotated[CardSetService, Depends()]
) -> APIResponse[CardSetRead]:
    card_set = await service.activate_card_set(card_set_id)
    return APIResponse(data=await _to_read(card_set, service), message="Card set activated")
