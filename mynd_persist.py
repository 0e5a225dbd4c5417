# mynd_persist.py
# On-disk encodings for the todo list (JSON array and binary stack)
# License: MIT
"""
Persistors for the todo store.

Every persistor exposes the same two calls:
  - load() -> List[TodoRecord]     (missing file => empty list)
  - save(records) -> None          (atomic: temp file + os.replace)

Binary layout (little-endian):
  header  : b"MYND" | u32 version | u64 count
  record* : u32 len | id utf-8 | u32 len | message utf-8 | i64 created_at (us since epoch) | u8 done
"""

from __future__ import annotations
import json
import logging
import os
import struct
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List

from mynd_todos import StoreError, TodoRecord

LOG = logging.getLogger("mynd.persist")

JSON_FILENAME = "todo.json"
BINARY_FILENAME = "todo.bin"

_MAGIC = b"MYND"
_VERSION = 1
_HEADER = struct.Struct("<4sIQ")
_LEN = struct.Struct("<I")
_TAIL = struct.Struct("<qB")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PersistError(StoreError):
    pass


# ---------------------------
# Utilities: atomic IO
# ---------------------------
def atomic_write_bytes(path: str, data: bytes) -> str:
    """Atomically replace `path` with `data`; the parent directory is created if needed."""
    dirp = os.path.dirname(path) or "."
    os.makedirs(dirp, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dirp, prefix=".mynd-", text=False)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
        return path
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def _read_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return b""
    except OSError as e:
        raise PersistError(f"failed to read {path}: {e}") from e


# ---------------------------
# Persistors
# ---------------------------
class MemoryTodosDB:
    """In-process persistor; nothing touches the disk."""

    def __init__(self, records: Iterable[TodoRecord] = ()):
        self.records: List[TodoRecord] = list(records)
        self.saves = 0

    def load(self) -> List[TodoRecord]:
        return list(self.records)

    def save(self, records: List[TodoRecord]) -> None:
        self.records = list(records)
        self.saves += 1


class JsonTodosDB:
    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[TodoRecord]:
        raw = _read_bytes(self.path)
        if not raw.strip():
            return []
        try:
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, list):
                raise ValueError("top-level value must be an array")
            return [TodoRecord.from_dict(d) for d in data]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistError(f"failed to decode {self.path}: {e}") from e

    def save(self, records: List[TodoRecord]) -> None:
        body = json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)
        try:
            atomic_write_bytes(self.path, body.encode("utf-8"))
        except OSError as e:
            raise PersistError(f"failed to write {self.path}: {e}") from e
        LOG.debug("wrote %d todos -> %s", len(records), self.path)


class BinaryTodosDB:
    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[TodoRecord]:
        raw = _read_bytes(self.path)
        if not raw:
            return []
        return decode_records(raw, source=self.path)

    def save(self, records: List[TodoRecord]) -> None:
        try:
            atomic_write_bytes(self.path, encode_records(records))
        except OSError as e:
            raise PersistError(f"failed to write {self.path}: {e}") from e
        LOG.debug("packed %d todos -> %s", len(records), self.path)


# ---------------------------
# Binary codec
# ---------------------------
def _micros(ts: datetime) -> int:
    return (ts - _EPOCH) // timedelta(microseconds=1)


def _write_str(out: List[bytes], text: str) -> None:
    data = text.encode("utf-8")
    out.append(_LEN.pack(len(data)))
    out.append(data)


def encode_records(records: List[TodoRecord]) -> bytes:
    out = [_HEADER.pack(_MAGIC, _VERSION, len(records))]
    for r in records:
        _write_str(out, r.id)
        _write_str(out, r.message)
        out.append(_TAIL.pack(_micros(r.created_at), 1 if r.done else 0))
    return b"".join(out)


class _Reader:
    def __init__(self, data: bytes, source: str):
        self.data = data
        self.pos = 0
        self.source = source

    def take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise PersistError(f"truncated todo file {self.source} at byte {self.pos}")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def unpack(self, st: struct.Struct) -> Any:
        return st.unpack(self.take(st.size))

    def string(self) -> str:
        (n,) = self.unpack(_LEN)
        try:
            return self.take(n).decode("utf-8")
        except UnicodeDecodeError as e:
            raise PersistError(f"invalid utf-8 in {self.source}: {e}") from e


def decode_records(data: bytes, source: str = "<bytes>") -> List[TodoRecord]:
    reader = _Reader(data, source)
    magic, version, count = reader.unpack(_HEADER)
    if magic != _MAGIC:
        raise PersistError(f"{source} is not a mynd todo file")
    if version != _VERSION:
        raise PersistError(f"{source}: unsupported format version {version}")
    records = []
    for _ in range(count):
        todo_id = reader.string()
        message = reader.string()
        micros, done = reader.unpack(_TAIL)
        records.append(TodoRecord(
            id=todo_id,
            message=message,
            created_at=_EPOCH + timedelta(microseconds=micros),
            done=bool(done),
        ))
    return records


def open_database(config: Any):
    """Pick the persistor named by `config.save_file_format` under `config.data_dir`."""
    fmt = str(config.save_file_format)
    if fmt == "json":
        return JsonTodosDB(os.path.join(config.data_dir, JSON_FILENAME))
    if fmt == "binary":
        return BinaryTodosDB(os.path.join(config.data_dir, BINARY_FILENAME))
    raise PersistError(f"unknown save file format {fmt!r}")

