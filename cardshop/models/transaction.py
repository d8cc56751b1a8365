import datetime

import sqlmodel

from cardshop.core.enums import Currency, TransactionItemType, TransactionStatus, TransactionType

from ._base import BaseModel


class Transaction(BaseModel, table=True):
    """Append-only ledger row. Never modified once ``status`` is COMPLETED."""

    __tablename__: str = "transactions"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    transaction_number: str = sqlmodel.Field(max_length=32, unique=True, index=True)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    amount: int = 0
    currency: Currency = Currency.USD
    description: str | None = None
    subtotal: int = 0
    tax: int = 0
    total: int = 0
    completed_at: datetime.datetime | None = sqlmodel.Field(
        default=None, sa_type=sqlmodel.DateTime(timezone=True)
    )
    failure_reason: str | None = None


class TransactionItem(BaseModel, table=True):
    __tablename__: str = "transaction_items"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    transaction_id: int = sqlmodel.Field(foreign_key="transactions.id", index=True)
    item_type: TransactionItemType
    item_id: int
    quantity: int = sqlmodel.Field(ge=1)
    unit_price: int = sqlmodel.Field(ge=0)
    subtotal: int = sqlmodel.Field(ge=0)
