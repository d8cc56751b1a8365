from typing import Annotated

from fastapi import APIRouter, Depends

from cardshop.schemas.common import APIResponse
from cardshop.schemas.inventory import InventoryRead, InventoryStats
from cardshop.services.inventory import InventoryService

router = APIRouter(prefix="/users/{user_id}/inventory", tags=["inventory"])


@router.get("/")
async def get_inventory(
    user_id: int, service: Annotated[InventoryService, Depends()]
) -> APIResponse[InventoryRead]:
    inventory = await service.get_inventory(user_id)
    return APIResponse(data=inventory)


@router.get("/stats")
async def get_inventory_stats(
    user_id: int, service: Annotated[InventoryService, Depends()]
) -> APIResponse[InventoryStats]:
    stats = await service.get_inventory_stats(user_id)
    return APIResponse(data=stats)
