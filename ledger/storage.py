import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import BaseModel, TypeAdapter

logger = logging.getLogger(__name__)

_MISSING = object()
_SNAPSHOT = TypeAdapter(dict[str, Any])


class InMemoryStorage:
    """Keyed collections of plain dict records with transactional writes.

    Writes made inside ``transaction()`` are journalled per thread; if the
    block raises, every write is undone in reverse order. Records handed out
    by ``get``/``values`` are copies, so callers change state only through
    ``put``.
    """

    def __init__(self):
        self._collections: dict[str, dict[Any, dict]] = {}
        self._models: dict[str, type[BaseModel]] = {}
        self._local = threading.local()
        self._sequence_lock = threading.Lock()
        self._sequence = 0

    def register_collection(self, name: str, model: Optional[type[BaseModel]] = None) -> None:
        self._collections.setdefault(name, {})
        if model is not None:
            self._models[name] = model

    def _collection(self, name: str) -> dict[Any, dict]:
        try:
            return self._collections[name]
        except KeyError:
            raise KeyError(f"Unknown collection {name!r}") from None

    def get(self, collection: str, key: Any) -> Optional[dict]:
        record = self._collection(collection).get(key)
        return dict(record) if record is not None else None

    def contains(self, collection: str, key: Any) -> bool:
        return key in self._collection(collection)

    def values(self, collection: str) -> list[dict]:
        return [dict(r) for r in list(self._collection(collection).values())]

    def put(self, collection: str, key: Any, record: dict) -> None:
        data = self._collection(collection)
        journal = self._journal()
        if journal is not None:
            journal.append((collection, key, data.get(key, _MISSING)))
        data[key] = dict(record)

    def next_sequence(self) -> int:
        with self._sequence_lock:
            self._sequence += 1
            return self._sequence

    def _journal(self) -> Optional[list]:
        return getattr(self._local, "journal", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._journal() is not None:
            yield
            return
        self._local.journal = []
        try:
            yield
            self._commit()
        except BaseException:
            self._rollback(self._local.journal)
            raise
        finally:
            self._local.journal = None

    def _rollback(self, journal: list) -> None:
        for collection, key, previous in reversed(journal):
            data = self._collections[collection]
            if previous is _MISSING:
                data.pop(key, None)
            else:
                data[key] = previous
        if journal:
            logger.warning("rolled back %d storage writes", len(journal))

    def _commit(self) -> None:
        pass


class JsonFileStorage(InMemoryStorage):
    """InMemoryStorage that snapshots every committed unit to one JSON file.

    Units are serialized by a storage-wide lock so a snapshot never contains
    another thread's uncommitted writes. The file is replaced atomically.
    """

    FILE_NAME = "ledger_state.json"

    def __init__(self, data_dir: Path):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.data_dir / self.FILE_NAME
        self._unit_lock = threading.RLock()
        self._raw: dict[str, dict] = {}
        if self.path.exists():
            state = json.loads(self.path.read_text(encoding="utf-8"))
            self._raw = state.get("collections", {})
            self._sequence = int(state.get("sequence", 0))
            logger.info("loaded ledger state from %s", self.path)

    def register_collection(self, name: str, model: Optional[type[BaseModel]] = None) -> None:
        super().register_collection(name, model)
        raw = self._raw.pop(name, None)
        if not raw:
            return
        data = self._collections[name]
        for key, record in raw.items():
            if model is None:
                data[key] = record
                continue
            data[key] = model.model_validate(record).model_dump(exclude=set(model.model_computed_fields))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._unit_lock:
            with super().transaction():
                yield

    def _commit(self) -> None:
        state = {
            "sequence": self._sequence,
            "collections": {
                **self._raw,
                **{
                    name: {str(key): record for key, record in data.items()}
                    for name, data in self._collections.items()
                },
            },
        }
        payload = _SNAPSHOT.dump_json(state, indent=2).decode("utf-8")
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".ledger-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
