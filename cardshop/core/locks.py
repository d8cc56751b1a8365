import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger

from cardshop.core.config import settings
from cardshop.core.exceptions import ConflictError


class UserLockRegistry:
    """Per-user mutual exclusion for read-modify-write on a user's inventory.

    Locks are created on demand and dropped once nobody holds or waits on them.
    Waiting is bounded by ``timeout`` seconds.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: defaultdict[int, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, user_id: int) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] += 1
        try:
            try:
                async with asyncio.timeout(self.timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning(f"Timed out after {self.timeout}s waiting for lock of user {user_id}")
                raise ConflictError(
                    "Another opening for this user is in progress, please retry",
                    conflict_field="user_id",
                    conflict_value=user_id,
                ) from None

            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[user_id] -= 1
            if self._users[user_id] == 0:
                del self._users[user_id]
                del self._locks[user_id]


user_locks = UserLockRegistry(settings.user_lock_timeout_seconds)


def get_user_locks() -> UserLockRegistry:
    return user_locks
