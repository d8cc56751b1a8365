import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.config import settings
from cardshop.core.db import get_db
from cardshop.core.enums import (
    CardRarity,
    Currency,
    ProductType,
    TransactionItemType,
    TransactionStatus,
    TransactionType,
)
from cardshop.core.exceptions import AppError, ConflictError, InternalServerError, NotFoundError
from cardshop.core.locks import UserLockRegistry, get_user_locks
from cardshop.engine.composer import ComposedBox
from cardshop.engine.draw import DrawResult
from cardshop.models.box import Box
from cardshop.models.inventory import UserInventory, UserInventoryItem
from cardshop.models.opening import BoxOpeningResult, OpeningRequest, PackOpeningResult
from cardshop.models.pack import Pack
from cardshop.models.transaction import Transaction, TransactionItem
from cardshop.models.user import User
from cardshop.schemas.opening import BoxOpeningRead, DrawnCardRead, PackOpeningRead
from cardshop.services.stock import StockService
from cardshop.utils.misc import generate_transaction_number, get_utc_now


@dataclass(frozen=True, slots=True)
class PendingOpening:
    """Drawn but not yet persisted opening of a pack or a box."""

    kind: ProductType
    product_id: int
    pack: Pack
    packs: tuple[DrawResult, ...]
    unit_price: int
    currency: Currency

    @classmethod
    def for_pack(cls, pack: Pack, draw: DrawResult) -> "PendingOpening":
        return cls(
            kind=ProductType.PACK,
            product_id=pack.id,
            pack=pack,
            packs=(draw,),
            unit_price=pack.price,
            currency=Currency(pack.currency),
        )

    @classmethod
    def for_box(cls, box: Box, pack: Pack, composed: ComposedBox) -> "PendingOpening":
        return cls(
            kind=ProductType.BOX,
            product_id=box.id,
            pack=pack,
            packs=composed.packs,
            unit_price=box.price_per_box,
            currency=Currency(box.currency),
        )

    @property
    def total_cards(self) -> int:
        return sum(len(draw) for draw in self.packs)

    @property
    def total_value(self) -> int:
        return sum(draw.total_value for draw in self.packs)


@dataclass(frozen=True, slots=True)
class CommittedOpening:
    request: OpeningRequest
    replayed: bool


class LedgerService:
    """Applies drawn openings to a user's inventory and the transaction ledger.

    Each application is one unit of work: the ledger row, opening results,
    inventory items and totals, the dedup record and the stock reservation
    are committed together or not at all. Applications for the same user are
    serialized through ``locks``.
    """

    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        locks: Annotated[UserLockRegistry, Depends(get_user_locks)],
    ) -> None:
        self.db = db
        self.locks = locks
        self.stock_service = StockService(db)

    async def find_committed(self, request_id: str) -> OpeningRequest | None:
        result = await self.db.exec(
            select(OpeningRequest).where(OpeningRequest.request_id == request_id)
        )
        return result.first()

    @staticmethod
    def ensure_same_request(
        request: OpeningRequest, user_id: int, kind: ProductType, product_id: int
    ) -> None:
        if (request.user_id, request.kind, request.product_id) != (user_id, kind, product_id):
            raise ConflictError(
                "Request id was already used for a different opening",
                conflict_field="request_id",
                conflict_value=request.request_id,
                retryable=False,
            )

    async def apply(
        self,
        user_id: int,
        opening: PendingOpening,
        request_id: str,
        reservation_id: str | None = None,
    ) -> CommittedOpening:
        """Persist ``opening`` for ``user_id`` exactly once per ``request_id``.

        A request id that was already committed returns the stored record with
        ``replayed=True`` and changes nothing.

        Raises:
            NotFoundError: The user (or the opened pack or box) doesn't exist.
            ConflictError: The user's lock can't be acquired in time, or the
                request id belongs to a different opening.
            InternalServerError: Persisting failed; nothing was written.
        """
        async with self.locks.hold(user_id):
            committed = await self.find_committed(request_id)
            if committed:
                self.ensure_same_request(committed, user_id, opening.kind, opening.product_id)
                return CommittedOpening(request=committed, replayed=True)

            try:
                request = await self._write(user_id, opening, request_id, reservation_id)
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                # Another worker may have committed the same request id first.
                committed = await self.find_committed(request_id)
                if committed is None:
                    logger.exception(f"Failed to record opening {request_id} of user {user_id}")
                    raise InternalServerError(
                        "Failed to record the opening", original_error=e
                    ) from e
                self.ensure_same_request(committed, user_id, opening.kind, opening.product_id)
                return CommittedOpening(request=committed, replayed=True)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.exception(f"Failed to record opening {request_id} of user {user_id}")
                raise InternalServerError("Failed to record the opening", original_error=e) from e
            except (AppError, asyncio.CancelledError):
                await self.db.rollback()
                raise

        logger.info(
            f"Applied {opening.kind} opening {request_id} for user {user_id}: "
            f"{opening.total_cards} cards worth {opening.total_value}"
        )
        return CommittedOpening(request=request, replayed=False)

    async def _write(
        self, user_id: int, opening: PendingOpening, request_id: str, reservation_id: str | None
    ) -> OpeningRequest:
        user_result = await self.db.exec(select(User).where(User.id == user_id))
        user = user_result.first()
        if not user or user.is_deleted:
            raise NotFoundError("User not found", resource="user", identifier=user_id)

        await self._ensure_product_exists(opening)
        inventory = await self._lock_inventory(user_id)

        card_counts = Counter(
            (card.card_id, card.value) for draw in opening.packs for card in draw.cards
        )
        subtotal = sum(value * quantity for (_, value), quantity in card_counts.items())

        transaction = Transaction(
            transaction_number=generate_transaction_number(),
            user_id=user_id,
            type=TransactionType.PACK_OPENING,
            status=TransactionStatus.COMPLETED,
            amount=subtotal,
            currency=opening.currency,
            description=(
                f"Opened {opening.kind} {opening.product_id} "
                f"(list price {opening.unit_price} {opening.currency})"
            ),
            subtotal=subtotal,
            total=subtotal,
            completed_at=get_utc_now(),
        )
        self.db.add(transaction)
        await self.db.flush()

        box_result: BoxOpeningResult | None = None
        if opening.kind == ProductType.BOX:
            box_result = BoxOpeningResult(
                user_id=user_id,
                box_id=opening.product_id,
                transaction_id=transaction.id,
                total_cards_obtained=opening.total_cards,
                total_value=opening.total_value,
            )
            self.db.add(box_result)
            await self.db.flush()

        pack_results = [
            PackOpeningResult(
                user_id=user_id,
                pack_id=opening.pack.id,
                card_set_id=opening.pack.card_set_id,
                transaction_id=transaction.id,
                box_opening_id=box_result.id if box_result else None,
                position=position,
                cards=[card.to_dict() for card in draw.cards],
                total_value=draw.total_value,
                rarity_breakdown={str(r): n for r, n in draw.rarity_breakdown.items()},
            )
            for position, draw in enumerate(opening.packs)
        ]
        self.db.add_all(pack_results)
        await self.db.flush()

        await self._credit_inventory(inventory, card_counts)
        self._record_items(transaction, card_counts)

        request = OpeningRequest(
            request_id=request_id,
            user_id=user_id,
            kind=opening.kind,
            product_id=opening.product_id,
            transaction_id=transaction.id,
            pack_result_id=None if box_result else pack_results[0].id,
            box_result_id=box_result.id if box_result else None,
        )
        self.db.add(request)

        if reservation_id is not None:
            await self.stock_service.consume(reservation_id)

        await self.db.flush()
        return request

    async def _ensure_product_exists(self, opening: PendingOpening) -> None:
        pack_result = await self.db.exec(select(Pack.id).where(Pack.id == opening.pack.id))
        if pack_result.first() is None:
            raise NotFoundError("Pack not found", resource="pack", identifier=opening.pack.id)

        if opening.kind == ProductType.BOX:
            box_result = await self.db.exec(select(Box.id).where(Box.id == opening.product_id))
            if box_result.first() is None:
                raise NotFoundError("Box not found", resource="box", identifier=opening.product_id)

    async def _lock_inventory(self, user_id: int) -> UserInventory:
        result = await self.db.exec(
            select(UserInventory)
            .where(UserInventory.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        inventory = result.first()
        if inventory is None:
            inventory = UserInventory(user_id=user_id)
            self.db.add(inventory)
            await self.db.flush()
        return inventory

    async def _credit_inventory(
        self, inventory: UserInventory, card_counts: Counter[tuple[int, int]]
    ) -> None:
        """Upsert one item per (card, value) and move the totals by the same amounts."""
        if not card_counts:
            return

        condition = settings.opened_card_condition
        result = await self.db.exec(
            select(UserInventoryItem)
            .where(
                UserInventoryItem.inventory_id == inventory.id,
                UserInventoryItem.condition == condition,
                col(UserInventoryItem.card_id).in_(sorted({card_id for card_id, _ in card_counts})),
            )
            .execution_options(populate_existing=True)
        )
        existing = {(item.card_id, item.unit_value): item for item in result.all()}

        for (card_id, value), quantity in card_counts.items():
            item = existing.get((card_id, value)) or UserInventoryItem(
                inventory_id=inventory.id,
                card_id=card_id,
                condition=condition,
                unit_value=value,
                quantity=0,
            )
            item.quantity += quantity
            self.db.add(item)

        inventory.total_cards += sum(card_counts.values())
        inventory.total_value += sum(value * n for (_, value), n in card_counts.items())
        self.db.add(inventory)

    def _record_items(
        self, transaction: Transaction, card_counts: Counter[tuple[int, int]]
    ) -> None:
        """One line per (card, value) received. The lines add up to the transaction subtotal;
        the opened product is referenced by the opening result, not by a priced line."""
        self.db.add_all(
            TransactionItem(
                transaction_id=transaction.id,
                item_type=TransactionItemType.CARD,
                item_id=card_id,
                quantity=quantity,
                unit_price=value,
                subtotal=value * quantity,
            )
            for (card_id, value), quantity in card_counts.items()
        )

    async def read_pack_result(self, result_id: int) -> PackOpeningRead:
        result = await self.db.exec(
            select(PackOpeningResult)
            .where(PackOpeningResult.id == result_id)
            .execution_options(populate_existing=True)
        )
        pack_result = result.first()
        if pack_result is None:
            raise NotFoundError(
                "Pack opening not found", resource="pack_opening", identifier=result_id
            )
        return self._to_pack_read(pack_result)

    async def read_box_result(self, result_id: int) -> BoxOpeningRead:
        result = await self.db.exec(
            select(BoxOpeningResult)
            .where(BoxOpeningResult.id == result_id)
            .execution_options(populate_existing=True)
        )
        box_result = result.first()
        if box_result is None:
            raise NotFoundError("Box opening not found", resource="box_opening", identifier=result_id)

        packs_result = await self.db.exec(
            select(PackOpeningResult)
            .where(PackOpeningResult.box_opening_id == result_id)
            .order_by(col(PackOpeningResult.position))
            .execution_options(populate_existing=True)
        )
        return BoxOpeningRead(
            id=box_result.id,
            user_id=box_result.user_id,
            box_id=box_result.box_id,
            transaction_id=box_result.transaction_id,
            packs_opened=[self._to_pack_read(pack) for pack in packs_result.all()],
            total_cards_obtained=box_result.total_cards_obtained,
            total_value=box_result.total_value,
            timestamp=box_result.created_at,
        )

    @staticmethod
    def _to_pack_read(pack_result: PackOpeningResult) -> PackOpeningRead:
        return PackOpeningRead(
            id=pack_result.id,
            user_id=pack_result.user_id,
            pack_id=pack_result.pack_id,
            card_set_id=pack_result.card_set_id,
            transaction_id=pack_result.transaction_id,
            cards_obtained=[DrawnCardRead(**card) for card in pack_result.cards],
            total_value=pack_result.total_value,
            rarity_breakdown={CardRarity(r): n for r, n in pack_result.rarity_breakdown.items()},
            timestamp=pack_result.created_at,
        )
