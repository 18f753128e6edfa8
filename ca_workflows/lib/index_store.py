"""Serial counters and issued-certificate database for one CA.

``index.json`` is the authoritative state. After every commit the OpenSSL
views ``serial``, ``crlnumber`` and ``index.txt`` are re-rendered so the
directory stays readable by ``openssl ca`` tooling.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from .errors import AlreadyExistsError, AlreadyRevokedError, NotFoundError
from .naming import format_serial
from .storage import file_lock, write_text_atomic

logger = logging.getLogger(__name__)

STATE_FILE = "index.json"
LOCK_FILE = "index.lock"
SERIAL_FILE = "serial"
CRLNUMBER_FILE = "crlnumber"
OPENSSL_INDEX_FILE = "index.txt"


class CertStatus(StrEnum):
    VALID = "valid"
    REVOKED = "revoked"


def _openssl_time(value: datetime) -> str:
    """UTCTime before 2050, GeneralizedTime after, as openssl ca writes them."""
    value = value.astimezone(UTC)
    if value.year < 2050:
        return value.strftime("%y%m%d%H%M%SZ")
    return value.strftime("%Y%m%d%H%M%SZ")


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class IndexEntry:
    """One issued certificate. Immutable apart from the valid -> revoked transition."""

    serial: int
    subject: str
    not_before: datetime
    not_after: datetime
    issued_at: datetime
    status: CertStatus = CertStatus.VALID
    revoked_at: datetime | None = None
    name: str = ""
    kind: str = ""

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial)

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial": self.serial,
            "subject": self.subject,
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "issued_at": self.issued_at.isoformat(),
            "status": self.status.value,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "name": self.name,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            serial=int(data["serial"]),
            subject=data["subject"],
            not_before=datetime.fromisoformat(data["not_before"]),
            not_after=datetime.fromisoformat(data["not_after"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            status=CertStatus(data["status"]),
            revoked_at=_parse_time(data.get("revoked_at")),
            name=data.get("name", ""),
            kind=data.get("kind", ""),
        )

    def openssl_line(self) -> str:
        """Render as a tab-separated ``index.txt`` line."""
        status = "R" if self.status is CertStatus.REVOKED else "V"
        revoked = _openssl_time(self.revoked_at) if self.revoked_at else ""
        return "\t".join(
            [status, _openssl_time(self.not_after), revoked, self.serial_hex, "unknown", self.subject]
        )


@dataclass
class IndexState:
    """Mutable view of the store handed out inside a transaction."""

    next_cert_serial: int = 1
    next_crl_serial: int = 1
    entries: dict[int, IndexEntry] = field(default_factory=dict)

    def record_issued(
        self,
        serial: int,
        subject: str,
        not_before: datetime,
        not_after: datetime,
        name: str = "",
        kind: str = "",
    ) -> IndexEntry:
        """Record a signed certificate and advance the serial counter.

        Raises:
            ValueError: If serial is not the next serial or is already used
        """
        if serial != self.next_cert_serial:
            raise ValueError(f"serial {serial} is not the next serial ({self.next_cert_serial})")
        if serial in self.entries:
            raise ValueError(f"serial {serial} already recorded")
        entry = IndexEntry(
            serial=serial,
            subject=subject,
            not_before=not_before,
            not_after=not_after,
            issued_at=datetime.now(UTC),
            name=name,
            kind=kind,
        )
        self.entries[serial] = entry
        self.next_cert_serial += 1
        return entry

    def revoke(self, serial: int, when: datetime | None = None) -> IndexEntry:
        """Transition entry valid -> revoked.

        Raises:
            NotFoundError: If serial was never issued
            AlreadyRevokedError: If already revoked; the first timestamp is kept
        """
        entry = self.entries.get(serial)
        if entry is None:
            raise NotFoundError(f"no certificate with serial {format_serial(serial)}")
        if entry.status is CertStatus.REVOKED:
            raise AlreadyRevokedError(
                f"certificate {entry.serial_hex} already revoked at {entry.revoked_at}"
            )
        entry.status = CertStatus.REVOKED
        entry.revoked_at = when or datetime.now(UTC)
        return entry

    def take_crl_serial(self) -> int:
        serial = self.next_crl_serial
        self.next_crl_serial += 1
        return serial

    def revoked_entries(self) -> list[IndexEntry]:
        return [e for e in self.sorted_entries() if e.status is CertStatus.REVOKED]

    def sorted_entries(self) -> list[IndexEntry]:
        return [self.entries[s] for s in sorted(self.entries)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "next_cert_serial": self.next_cert_serial,
            "next_crl_serial": self.next_crl_serial,
            "entries": [e.to_dict() for e in self.sorted_entries()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexState":
        entries = [IndexEntry.from_dict(item) for item in data.get("entries", [])]
        return cls(
            next_cert_serial=int(data["next_cert_serial"]),
            next_crl_serial=int(data["next_crl_serial"]),
            entries={e.serial: e for e in entries},
        )


class IndexStore:
    """File-backed Index Store with a per-CA writer lock.

    Reads always go to disk; there is no cache.
    """

    def __init__(self, base_dir: Path, lock_timeout: float = 30.0) -> None:
        self.base_dir = base_dir
        self.lock_timeout = lock_timeout

    @property
    def state_path(self) -> Path:
        return self.base_dir / STATE_FILE

    @classmethod
    def initialize(cls, base_dir: Path) -> "IndexStore":
        """Create an empty store with both counters at 1.

        Raises:
            AlreadyExistsError: If a store already exists in base_dir
        """
        store = cls(base_dir)
        if store.state_path.exists():
            raise AlreadyExistsError(f"index store already exists: {store.state_path}")
        base_dir.mkdir(parents=True, exist_ok=True)
        store._commit(IndexState())
        return store

    def snapshot(self) -> IndexState:
        """Return the latest committed state.

        Raises:
            NotFoundError: If the store has not been initialized
        """
        try:
            raw = self.state_path.read_text()
        except FileNotFoundError:
            raise NotFoundError(f"no index store at {self.base_dir}") from None
        return IndexState.from_dict(json.loads(raw))

    @contextmanager
    def transaction(self) -> Iterator[IndexState]:
        """Yield mutable state under the exclusive lock; commit only on success.

        If the body raises, nothing is written and the counters are unchanged.
        """
        with file_lock(self.base_dir / LOCK_FILE, timeout=self.lock_timeout):
            state = self.snapshot()
            yield state
            self._commit(state)

    def _commit(self, state: IndexState) -> None:
        write_text_atomic(self.state_path, json.dumps(state.to_dict(), indent=2) + "\n")
        write_text_atomic(self.base_dir / SERIAL_FILE, format_serial(state.next_cert_serial) + "\n")
        write_text_atomic(
            self.base_dir / CRLNUMBER_FILE, format_serial(state.next_crl_serial) + "\n"
        )
        lines = [e.openssl_line() + "\n" for e in state.sorted_entries()]
        write_text_atomic(self.base_dir / OPENSSL_INDEX_FILE, "".join(lines))
        logger.debug(
            "Committed index: next serial %s, next crl %s, %d entries",
            state.next_cert_serial,
            state.next_crl_serial,
            len(state.entries),
        )

    def get(self, serial: int) -> IndexEntry:
        """Return the entry for serial.

        Raises:
            NotFoundError: If serial was never issued
        """
        entry = self.snapshot().entries.get(serial)
        if entry is None:
            raise NotFoundError(f"no certificate with serial {format_serial(serial)}")
        return entry

    def entries(self) -> list[IndexEntry]:
        return self.snapshot().sorted_entries()

    def revoked_entries(self) -> list[IndexEntry]:
        return self.snapshot().revoked_entries()

    def find(self, name: str, kind: str | None = None) -> list[IndexEntry]:
        """Entries issued under a safe name, optionally of one kind."""
        return [
            e
            for e in self.entries()
            if e.name == name and (kind is None or e.kind == kind)
        ]
