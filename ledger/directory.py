import threading
from datetime import datetime, timezone
from typing import Optional, Protocol
from pydantic import BaseModel, Field, ConfigDict


class Inviter(BaseModel):
    id: str
    invite_code: str
    name: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(from_attributes=True)


class UserDirectory(Protocol):
    def exists(self, user_id: str) -> bool: ...


class InviteCodeResolver(Protocol):
    def resolve(self, invite_code: str) -> Optional[Inviter]: ...


class InMemoryUserDirectory:
    def __init__(self, user_ids: Optional[list[str]] = None):
        self._lock = threading.Lock()
        self._users: set[str] = set(user_ids or [])

    def register(self, user_id: str) -> None:
        with self._lock:
            self._users.add(user_id)

    def exists(self, user_id: str) -> bool:
        return user_id in self._users


class InMemoryAgentDirectory:
    """Invite codes issued to agents, resolved at registration time."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_code: dict[str, Inviter] = {}

    def add(self, inviter_id: str, invite_code: str, name: str = "", is_active: bool = True) -> Inviter:
        inviter = Inviter(id=inviter_id, invite_code=invite_code, name=name, is_active=is_active)
        with self._lock:
            self._by_code[invite_code] = inviter
        return inviter

    def set_active(self, invite_code: str, is_active: bool) -> Optional[Inviter]:
        with self._lock:
            inviter = self._by_code.get(invite_code)
            if inviter is None:
                return None
            inviter = inviter.model_copy(update={"is_active": is_active})
            self._by_code[invite_code] = inviter
            return inviter

    def resolve(self, invite_code: str) -> Optional[Inviter]:
        return self._by_code.get(invite_code)

    def list(self) -> list[Inviter]:
        return list(self._by_code.values())
