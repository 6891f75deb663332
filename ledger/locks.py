import threading
from contextlib import ExitStack, contextmanager
from typing import Iterator


class AccountLocks:
    """Per-user re-entrant locks, always taken in sorted user id order.

    A lock lives only while some thread holds or waits on it; the last
    ``hold`` to leave drops it, so the map stays bounded by active users.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, user_ids: list[str]) -> list[threading.RLock]:
        with self._guard:
            locks = []
            for user_id in user_ids:
                lock = self._locks.get(user_id)
                if lock is None:
                    lock = self._locks[user_id] = threading.RLock()
                self._users[user_id] = self._users.get(user_id, 0) + 1
                locks.append(lock)
            return locks

    def _checkin(self, user_ids: list[str]) -> None:
        with self._guard:
            for user_id in user_ids:
                self._users[user_id] -= 1
                if not self._users[user_id]:
                    del self._users[user_id]
                    del self._locks[user_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, *user_ids: str) -> Iterator[None]:
        ordered = sorted(set(user_ids))
        locks = self._checkout(ordered)
        try:
            with ExitStack() as stack:
                for lock in locks:
                    stack.enter_context(lock)
                yield
        finally:
            self._checkin(ordered)
