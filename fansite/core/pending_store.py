"""
Storage for pending double opt-in confirmations.

Provides a unified interface over two backends:
- DatabasePendingStore: pending_subscriptions table (default, survives
  restarts and is shared by every worker)
- FilesystemPendingStore: one JSON file per token in a local directory
  (single-process deployments and local development)

Expiry is implicit: a record is live while created_at + ttl is in the
future. Expired records are treated as absent and removed when looked up.
"""

import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fansite.core.config import settings
from fansite.core.database import ensure_utc, isoformat_utc, utcnow
from fansite.models.pending_subscription import PendingSubscription

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"^[a-f0-9]{32}$")


class PendingStoreError(Exception):
    """Storage backend failure (database or filesystem)"""


class PendingAlreadyExists(PendingStoreError):
    """A live pending confirmation already exists for the email"""


@dataclass
class PendingRecord:
    email: str
    token: str
    created_at: datetime
    source: str = "web"
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def expires_at(self, ttl_hours: int) -> datetime:
        return ensure_utc(self.created_at) + timedelta(hours=ttl_hours)

    def is_expired(self, ttl_hours: int, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at(ttl_hours)

    def to_json(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "token": self.token,
            "createdAt": isoformat_utc(self.created_at),
            "source": self.source,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "PendingRecord":
        created_at = datetime.fromisoformat(payload["createdAt"].replace("Z", "+00:00"))
        return cls(
            email=payload["email"],
            token=payload["token"],
            created_at=ensure_utc(created_at),
            source=payload.get("source") or "web",
            tags=list(payload.get("tags") or []),
            metadata=dict(payload.get("metadata") or {}),
        )


class PendingStoreBackend:
    """Abstract base class for pending confirmation storage"""

    def find_live_by_email(self, email: str, ttl_hours: int) -> Optional[PendingRecord]:
        """Return the live record for an email, removing expired ones"""
        raise NotImplementedError

    def create(self, record: PendingRecord, ttl_hours: Optional[int] = None) -> PendingRecord:
        """
        Persist a new record. Raises PendingAlreadyExists on a live duplicate.

        ttl_hours decides whether an existing record for the email is still live.
        """
        raise NotImplementedError

    def get_live(self, token: str, ttl_hours: int) -> Optional[PendingRecord]:
        """Return the record for a token if it exists and has not expired"""
        raise NotImplementedError

    def consume(self, token: str) -> bool:
        """Remove a record; True only for the caller that actually removed it"""
        raise NotImplementedError

    def delete(self, token: str) -> None:
        """Remove a record if present"""
        raise NotImplementedError

    def restore(self, record: PendingRecord) -> None:
        """Put back a record after a failed confirmation"""
        raise NotImplementedError

    def count_live(self, ttl_hours: int) -> int:
        raise NotImplementedError

    def purge_expired(self, ttl_hours: int) -> int:
        """Remove every expired record and return how many were removed"""
        raise NotImplementedError


class DatabasePendingStore(PendingStoreBackend):
    """
    pending_subscriptions table backend.

    Shares the request's session: consume() only flushes, so the token
    removal commits (or rolls back) together with the subscription write.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(row: PendingSubscription) -> PendingRecord:
        return PendingRecord(
            email=row.email,
            token=row.token,
            created_at=ensure_utc(row.created_at),
            source=row.source,
            tags=list(row.tags or []),
            metadata=dict(row.extra_metadata or {}),
        )

    def find_live_by_email(self, email: str, ttl_hours: int) -> Optional[PendingRecord]:
        try:
            row = self.db.query(PendingSubscription).filter(PendingSubscription.email == email).first()
            if row is None:
                return None
            record = self._to_record(row)
            if record.is_expired(ttl_hours):
                self.db.delete(row)
                self.db.commit()
                return None
            return record
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PendingStoreError(f"Pending lookup failed: {e}") from e

    def create(self, record: PendingRecord, ttl_hours: Optional[int] = None) -> PendingRecord:
        row = PendingSubscription(
            token=record.token,
            email=record.email,
            source=record.source,
            tags=record.tags,
            extra_metadata=record.metadata,
            created_at=record.created_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise PendingAlreadyExists(record.email) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PendingStoreError(f"Pending write failed: {e}") from e
        return record

    def get_live(self, token: str, ttl_hours: int) -> Optional[PendingRecord]:
        try:
            row = self.db.query(PendingSubscription).filter(PendingSubscription.token == token).first()
            if row is None:
                return None
            record = self._to_record(row)
            if record.is_expired(ttl_hours):
                self.db.delete(row)
                self.db.commit()
                return None
            return record
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PendingStoreError(f"Pending lookup failed: {e}") from e

    def consume(self, token: str) -> bool:
        deleted = self.db.query(PendingSubscription).filter(
            PendingSubscription.token == token
        ).delete(synchronize_session=False)
        self.db.flush()
        return deleted == 1

    def delete(self, token: str) -> None:
        try:
            self.db.query(PendingSubscription).filter(
                PendingSubscription.token == token
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PendingStoreError(f"Pending delete failed: {e}") from e

    def restore(self, record: PendingRecord) -> None:
        # consume() is undone by the session rollback
        return None

    def count_live(self, ttl_hours: int) -> int:
        cutoff = utcnow() - timedelta(hours=ttl_hours)
        return self.db.query(PendingSubscription).filter(PendingSubscription.created_at > cutoff).count()

    def purge_expired(self, ttl_hours: int) -> int:
        cutoff = utcnow() - timedelta(hours=ttl_hours)
        deleted = self.db.query(PendingSubscription).filter(
            PendingSubscription.created_at <= cutoff
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted


class FilesystemPendingStore(PendingStoreBackend):
    """
    One "<token>.json" file per pending confirmation.

    Writes go through a temporary file and os.replace so readers never see a
    partial record. Email uniqueness is enforced with an in-process lock only.
    """

    _lock = threading.Lock()

    def __init__(self, base_dir: str = ".pending-subscriptions", ttl_hours: Optional[int] = None):
        self.base_dir = base_dir
        self.ttl_hours = ttl_hours or settings.PENDING_TOKEN_TTL_HOURS
        os.makedirs(self.base_dir, exist_ok=True)

    def _path(self, token: str) -> Optional[str]:
        # Tokens become file names, so anything but 32 hex chars is rejected
        if not TOKEN_PATTERN.match(token or ""):
            return None
        return os.path.join(self.base_dir, f"{token}.json")

    def _read(self, path: str) -> Optional[PendingRecord]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return PendingRecord.from_json(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable pending file {os.path.basename(path)}: {e}")
            self._remove(path)
            return None
        except OSError as e:
            raise PendingStoreError(f"Pending read failed: {e}") from e

    @staticmethod
    def _remove(path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PendingStoreError(f"Pending delete failed: {e}") from e

    def _write(self, record: PendingRecord) -> None:
        path = self._path(record.token)
        if path is None:
            raise PendingStoreError("Invalid token format")
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_json(), f)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PendingStoreError(f"Pending write failed: {e}") from e

    def _iter_records(self):
        try:
            names = os.listdir(self.base_dir)
        except FileNotFoundError:
            return
        for name in names:
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.base_dir, name)
            record = self._read(path)
            if record is not None:
                yield path, record

    def find_live_by_email(self, email: str, ttl_hours: int) -> Optional[PendingRecord]:
        live = None
        for path, record in self._iter_records():
            if record.email != email:
                continue
            if record.is_expired(ttl_hours):
                self._remove(path)
            else:
                live = record
        return live

    def create(self, record: PendingRecord, ttl_hours: Optional[int] = None) -> PendingRecord:
        with self._lock:
            if self.find_live_by_email(record.email, ttl_hours or self.ttl_hours) is not None:
                raise PendingAlreadyExists(record.email)
            self._write(record)
        return record

    def get_live(self, token: str, ttl_hours: int) -> Optional[PendingRecord]:
        path = self._path(token)
        if path is None:
            return None
        record = self._read(path)
        if record is None:
            return None
        if record.is_expired(ttl_hours):
            self._remove(path)
            return None
        return record

    def consume(self, token: str) -> bool:
        path = self._path(token)
        if path is None:
            return False
        return self._remove(path)

    def delete(self, token: str) -> None:
        path = self._path(token)
        if path is not None:
            self._remove(path)

    def restore(self, record: PendingRecord) -> None:
        self._write(record)

    def count_live(self, ttl_hours: int) -> int:
        return sum(1 for _, record in self._iter_records() if not record.is_expired(ttl_hours))

    def purge_expired(self, ttl_hours: int) -> int:
        removed = 0
        for path, record in self._iter_records():
            if record.is_expired(ttl_hours) and self._remove(path):
                removed += 1
        return removed


def get_pending_store_backend(db: Session) -> PendingStoreBackend:
    """
    Build the configured pending store.

    Args:
        db: Database session (used by the database backend)

    Returns:
        DatabasePendingStore if PENDING_STORE_BACKEND == "database",
        FilesystemPendingStore if "filesystem"
    """
    backend = settings.PENDING_STORE_BACKEND.lower()
    if backend == "filesystem":
        return FilesystemPendingStore(settings.PENDING_DIR)
    if backend == "database":
        return DatabasePendingStore(db)
    raise ValueError(f"Unknown PENDING_STORE_BACKEND: {settings.PENDING_STORE_BACKEND}")
