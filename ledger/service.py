import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Iterator, Optional
from uuid import uuid4

from .errors import InsufficientFundsError, InvalidAmountError
from .locks import AccountLocks
from .models import (
    Account,
    EntryKind,
    LedgerEntry,
    LedgerHistoryResponse,
    Posting,
    UserBalance,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """Account balances plus the append-only transaction log behind them.

    Every balance change goes through ``post``: under the owner's lock the
    idempotency index is checked, the deltas are validated against the
    current balance, the account is rewritten and one entry per posting is
    appended, all inside a single storage transaction.
    """

    ACCOUNTS = "accounts"
    ENTRIES = "ledger_entries"
    KEYS = "idempotency_keys"

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        currency: str = "CNY",
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[AccountLocks] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.currency = currency
        self.clock = clock or utcnow
        self.locks = locks or AccountLocks()
        self.storage.register_collection(self.ACCOUNTS, Account)
        self.storage.register_collection(self.ENTRIES, LedgerEntry)
        self.storage.register_collection(self.KEYS)

    @contextmanager
    def atomic(self, *user_ids: str) -> Iterator[None]:
        with self.locks.hold(*user_ids):
            with self.storage.transaction():
                yield

    def get_account(self, user_id: str) -> Account:
        record = self.storage.get(self.ACCOUNTS, user_id)
        if record is None:
            return Account(user_id=user_id)
        return Account(**record)

    def post(self, user_id: str, *postings: Posting) -> list[LedgerEntry]:
        if not postings:
            return []
        entries: list[LedgerEntry] = []
        with self.atomic(user_id):
            account = self.get_account(user_id)
            available, frozen = account.available, account.frozen
            now = self.clock()
            applied = 0
            for posting in postings:
                existing = self.find_entry(user_id, posting.related_id, posting.kind)
                if existing is not None:
                    logger.info("ledger duplicate user=%s kind=%s related=%s ignored",
                                user_id, posting.kind.value, posting.related_id)
                    entries.append(existing)
                    continue
                new_available = available + posting.available_delta
                new_frozen = frozen + posting.frozen_delta
                if new_available < ZERO or new_frozen < ZERO:
                    logger.warning(
                        "ledger rejected user=%s kind=%s available=%s frozen=%s delta=(%s, %s)",
                        user_id, posting.kind.value, available, frozen,
                        posting.available_delta, posting.frozen_delta,
                    )
                    raise InsufficientFundsError(
                        f"Insufficient funds for {posting.kind.value}: available={available}, frozen={frozen}",
                        user_id=user_id,
                        kind=posting.kind.value,
                    )
                available, frozen = new_available, new_frozen
                entry = LedgerEntry(
                    id=uuid4(),
                    user_id=user_id,
                    kind=posting.kind,
                    amount=posting.signed_amount,
                    available_delta=posting.available_delta,
                    frozen_delta=posting.frozen_delta,
                    available_after=available,
                    frozen_after=frozen,
                    related_id=posting.related_id,
                    description=posting.description or posting.kind.value,
                    created_at=now,
                    sequence=self.storage.next_sequence(),
                    metadata=posting.metadata,
                )
                self._append(entry)
                entries.append(entry)
                applied += 1
            if applied:
                self.storage.put(self.ACCOUNTS, user_id, {
                    "user_id": user_id, "available": available, "frozen": frozen, "updated_at": now,
                })
                logger.info("ledger posted user=%s entries=%d available=%s frozen=%s",
                            user_id, applied, available, frozen)
        return entries

    def apply_delta(
        self,
        user_id: str,
        available_delta: Decimal,
        frozen_delta: Decimal,
        kind: EntryKind,
        related_id: str,
        description: str = "",
        amount: Optional[Decimal] = None,
    ) -> Account:
        self.post(user_id, Posting(
            kind=kind, related_id=related_id, available_delta=available_delta,
            frozen_delta=frozen_delta, amount=amount, description=description,
        ))
        return self.get_account(user_id)

    def freeze(self, user_id: str, amount: Decimal, kind: EntryKind, related_id: str, description: str = "") -> LedgerEntry:
        _require_positive(amount)
        return self.post(user_id, Posting(kind=kind, related_id=related_id, available_delta=-amount,
                                          frozen_delta=amount, description=description))[0]

    def unfreeze(self, user_id: str, amount: Decimal, kind: EntryKind, related_id: str, description: str = "") -> LedgerEntry:
        _require_positive(amount)
        return self.post(user_id, Posting(kind=kind, related_id=related_id, available_delta=amount,
                                          frozen_delta=-amount, description=description))[0]

    def credit(self, user_id: str, amount: Decimal, kind: EntryKind, related_id: str, description: str = "") -> LedgerEntry:
        _require_positive(amount)
        return self.post(user_id, Posting(kind=kind, related_id=related_id, available_delta=amount,
                                          description=description))[0]

    def debit(self, user_id: str, amount: Decimal, kind: EntryKind, related_id: str, description: str = "") -> LedgerEntry:
        if amount < ZERO:
            raise InvalidAmountError(f"Debit amount must not be negative, got {amount}")
        return self.post(user_id, Posting(kind=kind, related_id=related_id, available_delta=-amount,
                                          description=description))[0]

    def deduct_frozen(self, user_id: str, amount: Decimal, kind: EntryKind, related_id: str, description: str = "") -> LedgerEntry:
        _require_positive(amount)
        return self.post(user_id, Posting(kind=kind, related_id=related_id, frozen_delta=-amount,
                                          amount=-amount, description=description))[0]

    def exists_for_related(self, user_id: str, related_id: str, kind: EntryKind) -> bool:
        return self.storage.contains(self.KEYS, _idempotency_key(user_id, related_id, kind))

    def find_entry(self, user_id: str, related_id: str, kind: EntryKind) -> Optional[LedgerEntry]:
        ref = self.storage.get(self.KEYS, _idempotency_key(user_id, related_id, kind))
        if ref is None:
            return None
        record = self.storage.get(self.ENTRIES, ref["entry_id"])
        return LedgerEntry(**record) if record else None

    def list_entries(
        self,
        user_id: str,
        kinds: Optional[Iterable[EntryKind]] = None,
    ) -> list[LedgerEntry]:
        wanted = set(kinds) if kinds is not None else None
        entries = [
            LedgerEntry(**e) for e in self.storage.values(self.ENTRIES)
            if e["user_id"] == user_id and (wanted is None or e["kind"] in wanted)
        ]
        entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        return entries

    def get_balance(self, user_id: str) -> UserBalance:
        account = self.get_account(user_id)
        entries = self.list_entries(user_id)
        return UserBalance(
            user_id=user_id,
            currency=self.currency,
            available=account.available,
            frozen=account.frozen,
            total=account.total,
            total_entries=len(entries),
            last_transaction_at=entries[0].created_at if entries else None,
        )

    def get_ledger_history(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[EntryKind] = None,
    ) -> LedgerHistoryResponse:
        page = max(page, 1)
        page_size = max(page_size, 1)
        all_entries = self.list_entries(user_id, [kind] if kind else None)
        start = (page - 1) * page_size
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=all_entries[start:start + page_size],
            total_count=len(all_entries),
            page=page,
            page_size=page_size,
            kind=kind,
            balance=self.get_balance(user_id),
        )

    def _append(self, entry: LedgerEntry) -> None:
        key = _idempotency_key(entry.user_id, entry.related_id, entry.kind)
        self.storage.put(self.ENTRIES, str(entry.id), entry.model_dump())
        self.storage.put(self.KEYS, key, {"entry_id": str(entry.id)})


def _idempotency_key(user_id: str, related_id: str, kind: EntryKind) -> str:
    return f"{user_id}|{related_id}|{EntryKind(kind).value}"


def _require_positive(amount: Decimal) -> None:
    if amount <= ZERO:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
