import datetime
import uuid

import sqlmodel

from cardshop.core.enums import ProductType, ReservationStatus

from ._base import BaseModel


class ProductStock(BaseModel, table=True):
    __tablename__: str = "product_stock"
    __table_args__ = (
        sqlmodel.UniqueConstraint("product_type", "product_id", name="uq_product_stock"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    product_type: ProductType
    product_id: int = sqlmodel.Field(index=True)
    quantity: int = sqlmodel.Field(default=0, ge=0)


class StockReservation(BaseModel, table=True):
    __tablename__: str = "stock_reservations"

    id: str = sqlmodel.Field(
        primary_key=True, default_factory=lambda: uuid.uuid4().hex, max_length=32
    )
    product_type: ProductType
    product_id: int = sqlmodel.Field(index=True)
    quantity: int = sqlmodel.Field(ge=1)
    status: ReservationStatus = ReservationStatus.RESERVED
    expires_at: datetime.datetime = sqlmodel.Field(sa_type=sqlmodel.DateTime(timezone=True))
