import secrets
from collections.abc import Callable, Mapping
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.enums import OpeningState, ProductType
from cardshop.core.exceptions import ConflictError, NotFoundError, ValidationError
from cardshop.engine.composer import PackComposer, RandomFactory
from cardshop.engine.draw import DrawEngine
from cardshop.engine.pack_spec import PackSpec
from cardshop.models.box import Box
from cardshop.models.opening import OpeningRequest
from cardshop.models.pack import Pack
from cardshop.models.user import User
from cardshop.schemas.opening import BoxOpeningRead, PackOpeningRead
from cardshop.services.card_set import CardSetService
from cardshop.services.ledger import LedgerService, PendingOpening
from cardshop.services.pricing import PricingService
from cardshop.services.stock import StockService

DrawStep = Callable[[PackComposer, Mapping[int, int]], PendingOpening]


class OpeningService:
    """Opens packs and boxes for users, once per request id.

    An opening moves REQUESTED -> STOCK_RESERVED -> DRAWN -> APPLIED. Validation
    failures end it in FAILED before any stock is touched; failures after the
    reservation release the stock first (RELEASED -> FAILED). Nothing but the
    reservation is persisted before the ledger commits, so a cancelled opening
    leaves no trace once its reservation is released.
    """

    rng_factory: RandomFactory = secrets.SystemRandom

    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        card_set_service: Annotated[CardSetService, Depends()],
        pricing_service: Annotated[PricingService, Depends()],
        stock_service: Annotated[StockService, Depends()],
        ledger_service: Annotated[LedgerService, Depends()],
    ) -> None:
        self.db = db
        self.card_set_service = card_set_service
        self.pricing_service = pricing_service
        self.stock_service = stock_service
        self.ledger_service = ledger_service

    async def open_pack(self, user_id: int, pack_id: int, request_id: str) -> PackOpeningRead:
        committed = await self._find_replay(user_id, ProductType.PACK, pack_id, request_id)
        if committed is None:
            pack = await self._get_pack(pack_id)
            if not pack.is_available:
                raise ConflictError(f"Pack {pack_id} is not available", retryable=False)
            spec = PackSpec.from_pack(pack)

            committed = await self._open(
                user_id,
                request_id,
                ProductType.PACK,
                pack_id,
                spec,
                lambda composer, values: PendingOpening.for_pack(
                    pack, composer.compose_pack(spec, values)
                ),
            )

        if committed.pack_result_id is None:
            raise NotFoundError("Pack opening not found", resource="opening", identifier=request_id)
        return await self.ledger_service.read_pack_result(committed.pack_result_id)

    async def open_box(self, user_id: int, box_id: int, request_id: str) -> BoxOpeningRead:
        committed = await self._find_replay(user_id, ProductType.BOX, box_id, request_id)
        if committed is None:
            result = await self.db.exec(select(Box).where(Box.id == box_id))
            box = result.first()
            if not box:
                raise NotFoundError("Box not found", resource="box", identifier=box_id)
            if not box.is_available:
                raise ConflictError(f"Box {box_id} is not available", retryable=False)

            pack = await self._get_pack(box.pack_id)
            if pack.card_set_id != box.card_set_id:
                raise ValidationError(
                    f"Box {box_id} holds packs of card set {pack.card_set_id}, "
                    f"not {box.card_set_id}"
                )
            spec = PackSpec.from_pack(pack)

            committed = await self._open(
                user_id,
                request_id,
                ProductType.BOX,
                box_id,
                spec,
                lambda composer, values: PendingOpening.for_box(
                    box, pack, composer.compose_box(spec, box.packs_per_box, values)
                ),
            )

        if committed.box_result_id is None:
            raise NotFoundError("Box opening not found", resource="opening", identifier=request_id)
        return await self.ledger_service.read_box_result(committed.box_result_id)

    async def _get_pack(self, pack_id: int) -> Pack:
        result = await self.db.exec(select(Pack).where(Pack.id == pack_id))
        pack = result.first()
        if not pack:
            raise NotFoundError("Pack not found", resource="pack", identifier=pack_id)
        return pack

    async def _find_replay(
        self, user_id: int, kind: ProductType, product_id: int, request_id: str
    ) -> OpeningRequest | None:
        committed = await self.ledger_service.find_committed(request_id)
        if committed:
            self.ledger_service.ensure_same_request(committed, user_id, kind, product_id)
            logger.info(f"Opening {request_id} already applied, returning stored result")
        return committed

    async def _open(
        self,
        user_id: int,
        request_id: str,
        kind: ProductType,
        product_id: int,
        spec: PackSpec,
        draw: DrawStep,
    ) -> OpeningRequest:
        self._transition(request_id, OpeningState.REQUESTED)
        try:
            table = await self.card_set_service.get_rarity_table(spec.card_set_id)
            engine = DrawEngine(table)
            engine.check(spec)

            result = await self.db.exec(select(User).where(User.id == user_id))
            user = result.first()
            if not user or user.is_deleted:
                raise NotFoundError("User not found", resource="user", identifier=user_id)

            reservation = await self.stock_service.reserve(kind, product_id)
        except Exception as e:
            self._transition(request_id, OpeningState.FAILED, reason=e)
            raise
        self._transition(request_id, OpeningState.STOCK_RESERVED)

        try:
            values = await self.pricing_service.current_set_values(spec.card_set_id)
            opening = draw(PackComposer(engine, self.rng_factory), values)
            self._transition(request_id, OpeningState.DRAWN)

            committed = await self.ledger_service.apply(user_id, opening, request_id, reservation.id)
        except BaseException as e:
            await self._release(reservation.id)
            self._transition(request_id, OpeningState.RELEASED)
            self._transition(request_id, OpeningState.FAILED, reason=e)
            raise

        if committed.replayed:
            # A concurrent retry committed first; this reservation was never used.
            await self.stock_service.release(reservation.id)
        self._transition(request_id, OpeningState.APPLIED)
        return committed.request

    async def _release(self, reservation_id: str) -> None:
        await self.db.rollback()
        await self.stock_service.release(reservation_id)

    @staticmethod
    def _transition(
        request_id: str, state: OpeningState, *, reason: BaseException | None = None
    ) -> None:
        if state == OpeningState.FAILED:
            logger.warning(f"Opening {request_id} -> {state}: {type(reason).__name__}: {reason}")
        else:
            logger.debug(f"Opening {request_id} -> {state}")
