import asyncio
from datetime import timedelta
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.config import settings
from cardshop.core.db import get_db
from cardshop.core.enums import ProductType, ReservationStatus
from cardshop.core.exceptions import ConflictError, NotFoundError, ValidationError
from cardshop.models.stock import ProductStock, StockReservation
from cardshop.utils.misc import get_utc_now


class StockService:
    """Shop stock of packs and boxes, claimed through reservations.

    A reservation is committed on its own so concurrent buyers see it. It ends
    either CONSUMED, inside the commit that delivers the product, or RELEASED,
    which puts the quantity back.
    """

    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def get_stock(self, product_type: ProductType, product_id: int) -> ProductStock | None:
        result = await self.db.exec(
            select(ProductStock).where(
                ProductStock.product_type == product_type, ProductStock.product_id == product_id
            )
        )
        return result.first()

    async def set_stock(
        self, product_type: ProductType, product_id: int, quantity: int
    ) -> ProductStock:
        if quantity < 0:
            raise ValidationError("Stock quantity must be >= 0")

        stock = await self.get_stock(product_type, product_id)
        if stock is None:
            stock = ProductStock(product_type=product_type, product_id=product_id)
        stock.quantity = quantity
        self.db.add(stock)
        await self.db.commit()
        await self.db.refresh(stock)
        return stock

    async def get_reservation(self, reservation_id: str) -> StockReservation | None:
        result = await self.db.exec(
            select(StockReservation).where(StockReservation.id == reservation_id)
        )
        return result.first()

    async def reserve(
        self, product_type: ProductType, product_id: int, quantity: int = 1
    ) -> StockReservation:
        """Take ``quantity`` units out of stock and commit a reservation for them.

        Raises:
            ConflictError: Not enough stock left.
        """
        if quantity < 1:
            raise ValidationError("Reserved quantity must be >= 1")

        result = await self.db.exec(
            update(ProductStock)
            .where(
                col(ProductStock.product_type) == product_type,
                col(ProductStock.product_id) == product_id,
                col(ProductStock.quantity) >= quantity,
            )
            .values(quantity=col(ProductStock.quantity) - quantity, updated_at=get_utc_now())
        )
        if result.rowcount == 0:
            await self.db.rollback()
            logger.info(f"Out of stock: {product_type} {product_id} (wanted {quantity})")
            raise ConflictError(
                f"Not enough stock for {product_type} {product_id}",
                conflict_field=f"{product_type}_id",
                conflict_value=product_id,
            )

        reservation = StockReservation(
            product_type=product_type,
            product_id=product_id,
            quantity=quantity,
            expires_at=get_utc_now() + timedelta(seconds=settings.stock_reservation_ttl_seconds),
        )
        self.db.add(reservation)
        await self.db.commit()
        return reservation

    async def release(self, reservation_id: str) -> bool:
        """Put a reserved quantity back into stock.

        Returns False when the reservation no longer holds stock.
        """
        released = await self._release(reservation_id)
        await self.db.commit()
        return released

    async def consume(self, reservation_id: str) -> None:
        """Mark a reservation as delivered. Flushed but not committed, so it
        lands in the caller's unit of work."""
        result = await self.db.exec(
            update(StockReservation)
            .where(
                col(StockReservation.id) == reservation_id,
                col(StockReservation.status) == ReservationStatus.RESERVED,
            )
            .values(status=ReservationStatus.CONSUMED, updated_at=get_utc_now())
        )
        if result.rowcount == 0:
            raise NotFoundError(
                "Stock reservation is no longer active",
                resource="stock_reservation",
                identifier=reservation_id,
            )

    async def release_expired(self) -> int:
        """Release every reservation past its expiry. Returns how many were released."""
        result = await self.db.exec(
            select(StockReservation.id).where(
                StockReservation.status == ReservationStatus.RESERVED,
                col(StockReservation.expires_at) < get_utc_now(),
            )
        )
        expired = result.all()

        released = 0
        for reservation_id in expired:
            released += await self._release(reservation_id)
        await self.db.commit()

        if released:
            logger.info(f"Released {released} expired stock reservations")
        return released

    async def _release(self, reservation_id: str) -> bool:
        claim = await self.db.exec(
            update(StockReservation)
            .where(
                col(StockReservation.id) == reservation_id,
                col(StockReservation.status) == ReservationStatus.RESERVED,
            )
            .values(status=ReservationStatus.RELEASED, updated_at=get_utc_now())
        )
        if claim.rowcount == 0:
            return False

        reservation = await self.get_reservation(reservation_id)
        if reservation is None:
            return False

        await self.db.exec(
            update(ProductStock)
            .where(
                col(ProductStock.product_type) == reservation.product_type,
                col(ProductStock.product_id) == reservation.product_id,
            )
            .values(
                quantity=col(ProductStock.quantity) + reservation.quantity,
                updated_at=get_utc_now(),
            )
        )
        return True


async def sweep_expired_reservations(
    session_factory: async_sessionmaker[AsyncSession], interval: float
) -> None:
    """Release expired reservations every ``interval`` seconds until cancelled."""
    while True:
        try:
            async with session_factory() as session:
                await StockService(session).release_expired()
        except SQLAlchemyError:
            logger.exception("Failed to release expired stock reservations")
        await asyncio.sleep(interval)
