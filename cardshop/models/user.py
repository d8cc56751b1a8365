import sqlmodel

from cardshop.core.enums import UserStatus

from ._base import BaseModel


class User(BaseModel, table=True):
    __tablename__: str = "users"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    username: str = sqlmodel.Field(max_length=50, index=True, unique=True)
    status: UserStatus = UserStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == UserStatus.DELETED
