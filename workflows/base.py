from datetime import date, datetime, timezone
from typing import Optional

from ledger.directory import UserDirectory
from ledger.errors import NotFoundError, PermissionDeniedError
from ledger.service import LedgerService


class Workflow:
    """Shared plumbing: ledger access, identity checks and the clock."""

    def __init__(self, ledger: LedgerService, users: Optional[UserDirectory] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.users = users

    def now(self) -> datetime:
        return self.ledger.clock()

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()

    def _require_user(self, user_id: str) -> None:
        if self.users is not None and not self.users.exists(user_id):
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    @staticmethod
    def _check_owner(owner_id: str, user_id: Optional[str], what: str) -> None:
        if user_id is not None and owner_id != user_id:
            raise PermissionDeniedError(f"{what} does not belong to user {user_id}", user_id=user_id)


def on_day(moment: Optional[datetime], day: date) -> bool:
    return moment is not None and moment.astimezone(timezone.utc).date() == day
