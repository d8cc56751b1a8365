from typing import Annotated

from fastapi import APIRouter, Depends

from cardshop.schemas.common import APIResponse
from cardshop.schemas.opening import BoxOpeningRead, OpeningRequestBody, PackOpeningRead
from cardshop.services.opening import OpeningService

router = APIRouter(prefix="/users/{user_id}", tags=["openings"])


@router.post("/packs/{pack_id}/open")
async def open_pack(
    user_id: int,
    pack_id: int,
    body: OpeningRequestBody,
    service: Annotated[OpeningService, Depends()],
) -> APIResponse[PackOpeningRead]:
    """Open one pack. Retrying with the same request id returns the same result."""
    result = await service.open_pack(user_id, pack_id, body.request_id)
    return APIResponse(data=result, message="Pack opened successfully")


@router.post("/boxes/{box_id}/open")
async def open_box(
    user_id: int,
    box_id: int,
    body: OpeningRequestBody,
    service: Annotated[OpeningService, Depends()],
) -> APIResponse[BoxOpeningRead]:
    """Open every pack of a box as one event. Safe to retry with the same request id."""
    result = await service.open_box(user_id, box_id, body.request_id)
    return APIResponse(data=result, message="Box opened successfully")
