"""Persistence helpers for Postbox records and the delivery log."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Protocol, Union

from .lockfile import exclusive_lock
from .types import CommentRecord, Outcome, PostRecord

LOGGER = logging.getLogger(__name__)
TABLES = ("posts", "comments")

Record = Union[PostRecord, CommentRecord]


class PersistenceError(RuntimeError):
    """Raised when the store cannot persist a record."""


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class StoredRecord:
    """A persisted row with its assigned identifier."""

    table: str
    id: int
    created_at: str
    fields: Mapping[str, Any]

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass(frozen=True)
class LookupResult:
    """Explicit three-way result of ``find_by_id``."""

    status: LookupStatus
    record: StoredRecord | None = None
    error: str | None = None

    @classmethod
    def found(cls, record: StoredRecord) -> LookupResult:
        return cls(status=LookupStatus.FOUND, record=record)

    @classmethod
    def not_found(cls) -> LookupResult:
        return cls(status=LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: str) -> LookupResult:
        return cls(status=LookupStatus.ERROR, error=error)


class RecordStore(Protocol):
    """Persistence interface consumed by handlers."""

    def create(self, record: Record) -> int:
        """Persist a record and return its identifier."""

    def find_by_id(self, table: str, record_id: int) -> LookupResult:
        """Return the record with the given identifier."""


class Store:
    """JSON-file backed record store rooted at the Postbox state directory.

    Writes are serialised across threads and across processes sharing
    ``root_dir``. Every issued id is also kept in ``data/sequences.json`` so a
    quarantined table never hands out an id that existing comments point at.
    """

    def __init__(self, root_dir: Path, *, write_delivery_log: bool = True) -> None:
        self.root_dir = root_dir.expanduser()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = self.root_dir / "data"
        self._lock_path = self._data_dir / ".lock"
        self._sequence_path = self._data_dir / "sequences.json"
        self._lock = threading.Lock()
        log_dir = self.root_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        self._delivery_log_path = log_dir / "deliveries.log"
        self._delivery_logger: DeliveryLogger | None = None
        if write_delivery_log:
            self._delivery_logger = DeliveryLogger(self._delivery_log_path)

    def create(self, record: Record) -> int:
        """Append a record to its table and return the new identifier."""

        table = record.table
        fields = asdict(record)
        with self._lock:
            try:
                with exclusive_lock(self._lock_path):
                    data = self._load_table(table)
                    record_id = max(int(data["next_id"]), self._last_issued(table) + 1)
                    row = {
                        "id": record_id,
                        "created_at": datetime.now(timezone.utc).isoformat(),
                        **fields,
                    }
                    data["records"].append(row)
                    data["next_id"] = record_id + 1
                    self._record_issued(table, record_id)
                    self._write_table(table, data)
            except OSError as exc:
                raise PersistenceError(f"Failed to write {table}: {exc}") from exc
        LOGGER.debug("Stored %s #%s", table, record_id)
        return record_id

    def find_by_id(self, table: str, record_id: int) -> LookupResult:
        """Look up a record without raising for missing rows."""

        if table not in TABLES:
            return LookupResult.failed(f"Unknown table: {table}")
        try:
            with self._lock:
                data = self._load_table(table)
        except OSError as exc:
            return LookupResult.failed(f"Failed to read {table}: {exc}")
        for row in data["records"]:
            if row.get("id") == record_id:
                return LookupResult.found(_to_record(table, row))
        return LookupResult.not_found()

    def all(self, table: str) -> list[StoredRecord]:
        """Return every record stored in ``table`` in insertion order."""

        with self._lock:
            data = self._load_table(table)
        return [_to_record(table, row) for row in data["records"]]

    def comments_for(self, post_id: int) -> list[StoredRecord]:
        return [record for record in self.all("comments") if record.get("post_id") == post_id]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._load_table(table)["records"])

    def log_delivery(
        self,
        outcome: Outcome,
        *,
        message_id: str | None,
        handler: str | None = None,
        sender: str | None = None,
        recipient: str | None = None,
        subject: str | None = None,
    ) -> None:
        """Append an outcome to the delivery log."""

        if self._delivery_logger is None:
            return
        entry = DeliveryRecord.from_outcome(
            outcome,
            message_id=message_id,
            handler=handler,
            sender=sender,
            recipient=recipient,
            subject=subject,
        )
        self._delivery_logger.append(entry)

    @property
    def delivery_log_path(self) -> Path:
        return self._delivery_log_path

    def _table_path(self, table: str) -> Path:
        if table not in TABLES:
            raise PersistenceError(f"Unknown table: {table}")
        return self._data_dir / f"{table}.json"

    def _load_table(self, table: str) -> dict[str, Any]:
        path = self._table_path(table)
        if not path.exists():
            return {"next_id": 1, "records": []}
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError:
            LOGGER.warning("Table '%s' at %s is corrupt; starting empty", table, path)
            self._quarantine_corrupt_file(path)
            return {"next_id": 1, "records": []}
        if not isinstance(data, dict) or not isinstance(data.get("records"), list):
            LOGGER.warning("Table '%s' at %s has an unexpected layout; starting empty", table, path)
            self._quarantine_corrupt_file(path)
            return {"next_id": 1, "records": []}
        data.setdefault("next_id", _next_id(data["records"]))
        return data

    def _last_issued(self, table: str) -> int:
        if not self._sequence_path.exists():
            return 0
        try:
            with self._sequence_path.open("r", encoding="utf-8") as handle:
                sequences = json.load(handle)
            return int(sequences.get(table, 0))
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Id sequence file {self._sequence_path} is unreadable; refusing to issue ids"
            ) from exc

    def _record_issued(self, table: str, record_id: int) -> None:
        sequences = {name: self._last_issued(name) for name in TABLES}
        sequences[table] = record_id

        def _write(tmp_path: Path) -> None:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(sequences, handle, indent=2)

        self._atomic_write(self._sequence_path, _write)

    def _write_table(self, table: str, data: dict[str, Any]) -> None:
        target = self._table_path(table)

        def _write(tmp_path: Path) -> None:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)

        self._atomic_write(target, _write)

    def _atomic_write(self, target: Path, writer: Callable[[Path], None]) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_name = f".{target.name}.{uuid.uuid4().hex}.tmp"
        tmp_path = target.with_name(tmp_name)
        try:
            writer(tmp_path)
            tmp_path.replace(target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def _quarantine_corrupt_file(self, path: Path) -> None:
        if not path.exists():
            return
        suffix = ".corrupt"
        candidate = path.with_name(f"{path.name}{suffix}")
        counter = 1
        while candidate.exists():
            counter += 1
            candidate = path.with_name(f"{path.name}{suffix}{counter}")
        path.replace(candidate)


def _to_record(table: str, row: Mapping[str, Any]) -> StoredRecord:
    fields = {key: value for key, value in row.items() if key not in ("id", "created_at")}
    return StoredRecord(
        table=table,
        id=int(row["id"]),
        created_at=str(row.get("created_at", "")),
        fields=fields,
    )


def _next_id(rows: list[dict[str, Any]]) -> int:
    ids = [int(row["id"]) for row in rows if "id" in row]
    return max(ids, default=0) + 1


@dataclass(frozen=True)
class DeliveryRecord:
    """JSON serialisable representation of a processing outcome."""

    timestamp: datetime
    message_id: str | None
    status: str
    handler: str | None
    record_id: int | None
    kind: str | None
    detail: str | None
    sender: str | None
    recipient: str | None
    subject: str | None

    @classmethod
    def from_outcome(
        cls,
        outcome: Outcome,
        *,
        message_id: str | None,
        handler: str | None = None,
        sender: str | None = None,
        recipient: str | None = None,
        subject: str | None = None,
        timestamp: datetime | None = None,
    ) -> DeliveryRecord:
        record_id = getattr(outcome, "record_id", None)
        kind = getattr(outcome, "kind", None)
        detail = getattr(outcome, "reason", None) or getattr(outcome, "error", None)
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            message_id=message_id,
            status=outcome.status.value,
            handler=handler,
            record_id=record_id,
            kind=kind.value if kind is not None else None,
            detail=detail,
            sender=sender,
            recipient=recipient,
            subject=subject,
        )

    def to_json(self) -> str:
        payload = {
            "timestamp": self.timestamp.isoformat(),
            "message_id": self.message_id,
            "status": self.status,
            "handler": self.handler,
            "record_id": self.record_id,
            "kind": self.kind,
            "detail": self.detail,
            "sender": self.sender,
            "recipient": self.recipient,
            "subject": self.subject,
        }
        return json.dumps(payload, separators=(",", ":"))


class DeliveryLogger:
    """Append delivery records as JSON lines to a size-rotated file."""

    def __init__(self, path: Path, *, max_bytes: int = 5_000_000, backups: int = 3) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backups,
            encoding="utf-8",
            delay=True,
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))

    def append(self, record: DeliveryRecord) -> None:
        entry = logging.makeLogRecord(
            {
                "name": __name__,
                "msg": record.to_json(),
                "levelno": logging.INFO,
                "levelname": "INFO",
            }
        )
        self._handler.handle(entry)


__all__ = [
    "TABLES",
    "DeliveryLogger",
    "DeliveryRecord",
    "LookupResult",
    "LookupStatus",
    "PersistenceError",
    "Record",
    "RecordStore",
    "Store",
    "StoredRecord",
]
