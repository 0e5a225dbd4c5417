# mynd_reconcile.py
# Buffer reconciliation between todo documents and the todo store
# License: MIT
"""
Reconciliation of editor buffers with the todo store.

An editor re-submits a whole todo document on every change. The engine
remembers, per open document, which todo ids it saw last time (the document's
membership set). Each round it:

  1. hashes every parsed item's message into its id
  2. reuses the stored record for known ids (keeps created_at/done) and
     creates fresh records for the rest
  3. turns parse errors into positioned diagnostics
  4. retracts ids that were in the document last round but are gone now
  5. replaces the document's membership set

`DocumentSynchronizer` wraps one round end to end for an editor event:
parse, take the store lock (non-blocking), snapshot, reconcile, apply the
writes one by one, and report. A failed write is recorded and skipped; a busy
lock aborts the whole round and leaves the membership set untouched.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from mynd_identity import content_hash, short_id
from mynd_lexer import Position, Span
from mynd_parser import Item, ParseError, ParseOutcome, parse_text
from mynd_todos import StoreError, TodoRecord, utcnow

LOG = logging.getLogger("mynd.reconcile")

SEVERITY_ERROR = 1


class DocumentState(enum.Enum):
    UNKNOWN = "unknown"
    TRACKED = "tracked"


# -------------------------
# Diagnostics (editor coordinates only)
# -------------------------
@dataclass(frozen=True)
class LinePosition:
    line: int
    character: int

    @classmethod
    def from_position(cls, pos: Position) -> "LinePosition":
        return cls(pos.line, pos.col)

    def to_lsp(self) -> Dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True)
class Range:
    start: LinePosition
    end: LinePosition

    @classmethod
    def from_span(cls, span: Span) -> "Range":
        return cls(LinePosition.from_position(span.start), LinePosition.from_position(span.end))

    def to_lsp(self) -> Dict[str, Any]:
        return {"start": self.start.to_lsp(), "end": self.end.to_lsp()}


@dataclass(frozen=True)
class Diagnostic:
    document_id: str
    range: Range
    message: str
    severity: int = SEVERITY_ERROR

    @classmethod
    def from_error(cls, document_id: str, err: ParseError) -> "Diagnostic":
        return cls(document_id, Range.from_span(err.span), err.message)

    def to_lsp(self) -> Dict[str, Any]:
        return {
            "range": self.range.to_lsp(),
            "severity": self.severity,
            "source": "mynd",
            "message": self.message,
        }


def diagnostics_for(document_id: str, outcome: ParseOutcome) -> List[Diagnostic]:
    return [Diagnostic.from_error(document_id, err) for err in outcome.errors]


# -------------------------
# Engine
# -------------------------
@dataclass
class Reconciliation:
    document_id: str
    upserts: List[TodoRecord] = field(default_factory=list)
    retractions: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    # subset of upserts that were not in the snapshot
    created: List[TodoRecord] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.retractions)


class ReconciliationEngine:
    def __init__(self, clock: Callable[[], Any] = utcnow):
        self._clock = clock
        self._membership: Dict[str, Set[str]] = {}

    def state(self, document_id: str) -> DocumentState:
        if document_id in self._membership:
            return DocumentState.TRACKED
        return DocumentState.UNKNOWN

    def membership(self, document_id: str) -> FrozenSet[str]:
        return frozenset(self._membership.get(document_id, ()))

    @property
    def documents(self) -> List[str]:
        return list(self._membership)

    def reconcile(self, document_id: str, outcome: ParseOutcome, snapshot: Iterable[TodoRecord]) -> Reconciliation:
        previous = set(self._membership.get(document_id, ()))
        known = {record.id: record for record in snapshot}
        current: Set[str] = set()
        result = Reconciliation(document_id)
        now = self._clock()

        for entry in outcome:
            if isinstance(entry, Item):
                todo_id = content_hash(entry.message)
                previous.discard(todo_id)
                if todo_id in current:
                    continue  # same message twice in one buffer
                current.add(todo_id)
                record = known.get(todo_id)
                if record is None:
                    record = TodoRecord(id=todo_id, message=entry.message, created_at=now, done=False)
                    result.created.append(record)
                result.upserts.append(record)
            elif isinstance(entry, ParseError):
                result.diagnostics.append(Diagnostic.from_error(document_id, entry))
            else:
                raise AssertionError(f"unhandled parse outcome {entry!r}")

        result.retractions = sorted(previous)
        self._membership[document_id] = current
        LOG.debug("reconciled %s: %d upserts (%d new), %d retractions, %d diagnostics",
                  document_id, len(result.upserts), len(result.created),
                  len(result.retractions), len(result.diagnostics))
        return result

    def close(self, document_id: str) -> None:
        self._membership.pop(document_id, None)


# -------------------------
# Per-event synchronizer
# -------------------------
@dataclass(frozen=True)
class StoreFailure:
    operation: str
    todo_id: str
    error: str

    def __str__(self) -> str:
        return f"{self.operation} {short_id(self.todo_id)} failed: {self.error}"


@dataclass
class SyncResult:
    document_id: str
    version: Optional[int] = None
    reconciliation: Optional[Reconciliation] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    failures: List[StoreFailure] = field(default_factory=list)
    fatal: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fatal is None and not self.failures


class DocumentSynchronizer:
    def __init__(self, store: Any, engine: Optional[ReconciliationEngine] = None):
        self.store = store
        self.engine = engine or ReconciliationEngine()

    def on_change(self, document_id: str, text: str, version: Optional[int] = None) -> SyncResult:
        outcome = parse_text(text)
        for err in outcome.errors:
            LOG.warning("[Diagnostic] %s: %s", err, err.span)

        try:
            with self.store.transaction() as txn:
                snapshot = txn.get_all()
                rec = self.engine.reconcile(document_id, outcome, snapshot)
                failures = self._apply(txn, rec)
        except StoreError as e:
            LOG.error("no changes applied to %s this round: %s", document_id, e)
            return SyncResult(document_id, version, diagnostics=diagnostics_for(document_id, outcome), fatal=str(e))

        return SyncResult(document_id, version, rec, list(rec.diagnostics), failures)

    def on_close(self, document_id: str) -> None:
        self.engine.close(document_id)

    def _apply(self, txn: Any, rec: Reconciliation) -> List[StoreFailure]:
        failures: List[StoreFailure] = []
        for record in rec.upserts:
            try:
                txn.upsert(record)
            except StoreError as e:
                LOG.error("upsert of %s failed: %s", short_id(record.id), e)
                failures.append(StoreFailure("upsert", record.id, str(e)))
        for todo_id in rec.retractions:
            try:
                txn.retract(todo_id)
            except StoreError as e:
                LOG.error("retract of %s failed: %s", short_id(todo_id), e)
                failures.append(StoreFailure("retract", todo_id, str(e)))
        return failures
