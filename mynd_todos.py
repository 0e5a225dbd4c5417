# mynd_todos.py
# Todo records and the ordered, lock-guarded todo store
# License: MIT
"""
Todo records and the shared todo store.

The store keeps an ordered list (newest first) and is guarded by one
non-reentrant lock that is only ever acquired with a non-blocking attempt:
a caller that finds it held gets a `StoreLockError` immediately instead of
stalling the editor session.

All operations run inside `TodoStore.transaction()`; the convenience methods
on `TodoStore` each open their own transaction.
"""

from __future__ import annotations
import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from mynd_identity import content_hash

LOG = logging.getLogger("mynd.todos")


# -------------------------
# Errors
# -------------------------
class MyndError(Exception):
    pass


class StoreError(MyndError):
    pass


class StoreLockError(StoreError):
    pass


class TodoNotFoundError(StoreError):
    pass


class DuplicateTodoError(StoreError):
    pass


class AmbiguousIdError(StoreError):
    pass


# -------------------------
# Records
# -------------------------
_FRACTION_RE = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    """Parse ISO-8601 timestamps, including 'Z' suffixes and nanosecond fractions."""
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microseconds
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class TodoRecord:
    id: str
    message: str
    created_at: datetime = field(default_factory=utcnow)
    done: bool = False

    @classmethod
    def new(cls, message: str, now: Optional[datetime] = None) -> "TodoRecord":
        return cls(id=content_hash(message), message=message, created_at=now or utcnow(), done=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "created_at": format_timestamp(self.created_at),
            "done": self.done,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TodoRecord":
        message = data["message"]
        return cls(
            id=data.get("id") or content_hash(message),
            message=message,
            created_at=parse_timestamp(data["created_at"]) if data.get("created_at") else utcnow(),
            done=bool(data.get("done", False)),
        )


# -------------------------
# Store
# -------------------------
class StoreTransaction:
    """Unlocked view of the store's list; only handed out while the lock is held."""

    def __init__(self, store: "TodoStore"):
        self._store = store

    @property
    def _list(self) -> List[TodoRecord]:
        return self._store._list

    def _touch(self) -> None:
        self._store.dirty = True

    def _find_index(self, todo_id: str) -> int:
        for idx, todo in enumerate(self._list):
            if todo.id == todo_id:
                return idx
        raise TodoNotFoundError(f"didn't find a todo by the id provided: {todo_id}")

    # -- reconciliation contract --
    def get_all(self) -> List[TodoRecord]:
        return list(self._list)

    def get(self, todo_id: str) -> Optional[TodoRecord]:
        for todo in self._list:
            if todo.id == todo_id:
                return todo
        return None

    def upsert(self, record: TodoRecord) -> None:
        for idx, todo in enumerate(self._list):
            if todo.id == record.id:
                if todo != record:
                    self._list[idx] = record
                    self._touch()
                return
        self._list.insert(0, record)
        self._touch()

    def retract(self, todo_id: str) -> None:
        del self._list[self._find_index(todo_id)]
        self._touch()

    # -- command surface --
    def add_message(self, message: str) -> TodoRecord:
        todo = TodoRecord.new(message)
        if self.get(todo.id) is not None:
            raise DuplicateTodoError(f"already noted this todo message: {message!r}")
        self._list.insert(0, todo)
        self._touch()
        return todo

    def remove(self, todo_id: str) -> None:
        self.retract(todo_id)

    def mark_done(self, todo_id: str) -> TodoRecord:
        todo = self._list[self._find_index(todo_id)]
        todo.done = not todo.done
        self._touch()
        return todo

    def remove_done(self) -> int:
        kept = [t for t in self._list if not t.done]
        removed = len(self._list) - len(kept)
        if removed:
            self._list[:] = kept
            self._touch()
        return removed

    def move_up(self, todo_id: str) -> None:
        idx = self._find_index(todo_id)
        if idx == 0:
            return
        lst = self._list
        lst[idx - 1], lst[idx] = lst[idx], lst[idx - 1]
        self._touch()

    def move_down(self, todo_id: str) -> None:
        idx = self._find_index(todo_id)
        if idx >= len(self._list) - 1:
            return
        lst = self._list
        lst[idx + 1], lst[idx] = lst[idx], lst[idx + 1]
        self._touch()

    def move_below(self, todo_id: str, target_id: str) -> None:
        """Move a todo item to be directly below another."""
        # index 0 is the newest item (top), so idx + 1 is below idx
        idx = self._find_index(todo_id)
        target_idx = self._find_index(target_id)
        if idx == target_idx:
            LOG.info("noop: won't move a todo item below itself")
            return
        if idx == target_idx + 1:
            LOG.info("noop: todo is already below target")
            return
        source = self._list.pop(idx)
        if idx < target_idx:
            # target shifted up by one after the pop
            self._list.insert(target_idx, source)
        else:
            self._list.insert(target_idx + 1, source)
        self._touch()

    def resolve_id(self, prefix: str) -> str:
        if self.get(prefix) is not None:
            return prefix
        matches = [t.id for t in self._list if t.id.startswith(prefix)]
        if not matches:
            raise TodoNotFoundError(f"didn't find a todo by the id provided: {prefix}")
        if len(matches) > 1:
            raise AmbiguousIdError(f"id prefix {prefix!r} matches {len(matches)} todos")
        return matches[0]


class TodoStore:
    def __init__(self, db: Any):
        self._db = db
        self._lock = threading.Lock()
        self._list: List[TodoRecord] = list(db.load())
        self.dirty = False

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        if not self._lock.acquire(blocking=False):
            raise StoreLockError("failed to acquire lock on todos list")
        try:
            yield StoreTransaction(self)
        finally:
            self._lock.release()

    def __len__(self) -> int:
        return len(self._list)

    # -------------------------
    # Persistence
    # -------------------------
    def flush(self) -> None:
        with self.transaction():
            self._db.save(list(self._list))
            self.dirty = False
        LOG.debug("flushed %d todos", len(self._list))

    def reload(self) -> None:
        with self.transaction():
            self._list = list(self._db.load())
            self.dirty = False

    # -------------------------
    # Single-operation conveniences
    # -------------------------
    def get_all(self) -> List[TodoRecord]:
        with self.transaction() as txn:
            return txn.get_all()

    def get(self, todo_id: str) -> Optional[TodoRecord]:
        with self.transaction() as txn:
            return txn.get(todo_id)

    def upsert(self, record: TodoRecord) -> None:
        with self.transaction() as txn:
            txn.upsert(record)

    def retract(self, todo_id: str) -> None:
        with self.transaction() as txn:
            txn.retract(todo_id)

    def add_message(self, message: str) -> TodoRecord:
        with self.transaction() as txn:
            return txn.add_message(message)

    def remove(self, todo_id: str) -> None:
        with self.transaction() as txn:
            txn.remove(todo_id)

    def mark_done(self, todo_id: str) -> TodoRecord:
        with self.transaction() as txn:
            return txn.mark_done(todo_id)

    def remove_done(self) -> int:
        with self.transaction() as txn:
            return txn.remove_done()

    def move_up(self, todo_id: str) -> None:
        with self.transaction() as txn:
            txn.move_up(todo_id)

    def move_down(self, todo_id: str) -> None:
        with self.transaction() as txn:
            txn.move_down(todo_id)

    def move_below(self, todo_id: str, target_id: str) -> None:
        with self.transaction() as txn:
            txn.move_below(todo_id, target_id)

    def resolve_id(self, prefix: str) -> str:
        with self.transaction() as txn:
            return txn.resolve_id(prefix)
