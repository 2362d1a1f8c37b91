# SPDX-License-Identifier: MPL-2.0
"""
Credential store backed by SQLite.

The store owns the authoritative copy of every credential and its proof.
Credentials are append-only: an id is written once and only its status may
change afterwards, from ACTIVE to REVOKED. Expiry is never stored; it is
derived from the credential's validity claim whenever it is asked for.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Union

from permit_vc.core.canonicalization import format_timestamp
from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.exceptions import ConflictError, NotFoundError, StoreUnavailable
from permit_vc.core.models import (
    Credential,
    CredentialStatus,
    Proof,
    StoredCredential,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Database schema version
SCHEMA_VERSION = 1

# Claims that carry the end of a permit's validity window, in lookup order
VALIDITY_CLAIMS = ("validUntil", "expiryDate", "expirationDate")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credentials (
        credential_id TEXT PRIMARY KEY,
        document TEXT NOT NULL,
        proof TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('ACTIVE', 'REVOKED')),
        revocation_reason TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        revoked_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_credentials_status ON credentials(status)
    """,
]


def parse_validity_end(value: Any) -> datetime:
    """Return the first instant at which a validity claim no longer holds.

    A bare date is valid through the end of that day in UTC.

    Raises:
        ValueError: ``value`` is not a date or RFC 3339 timestamp.
    """
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, date):
        return datetime.combine(value + timedelta(days=1), time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported validity value: {value!r}")
    text = value.strip()
    if len(text) == 10:
        day = date.fromisoformat(text)
        return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return parse_timestamp(text)


class _KeyedLocks:
    """Per-key locks that are dropped once no writer holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=timeout):
                raise StoreUnavailable(
                    f"Timed out waiting to write credential {key}", {"credential_id": key}
                )
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)


class CredentialStore:
    """
    Durable mapping from credential id to document, proof and status.

    ``put`` and ``revoke`` are serialised per credential id; reads never take
    the per-id writer locks. Every operation is bounded by ``timeout``
    seconds and surfaces a timeout or storage fault as
    :class:`StoreUnavailable`.

    A file database runs in WAL mode with a connection per operation, so
    reads proceed while another writer holds the database. The ``:memory:``
    backend shares one connection behind a single lock: its statements run
    one at a time, and a read may wait for an unrelated write.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:"
        timeout: Request-level timeout in seconds
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        timeout: float = 5.0,
        clock: Clock = utc_now,
        validity_claims: Iterable[str] = VALIDITY_CLAIMS,
    ):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:" for in-memory DB.
            timeout: Seconds to wait for locks and the database before giving up
            clock: Source of the current time for bookkeeping timestamps
            validity_claims: Claim names consulted, in order, for expiry
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.validity_claims = tuple(validity_claims)
        self._clock = clock
        self._writers = _KeyedLocks()
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._memory_lock = threading.Lock()
        if self.db_path == ":memory:":
            # A private in-memory database only lives as long as its connection
            self._memory_conn = sqlite3.connect(
                ":memory:", timeout=timeout, isolation_level=None, check_same_thread=False
            )
            self._memory_conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema and ensure proper configuration."""
        with self._get_connection() as conn:
            if self._memory_conn is None:
                # WAL lets readers proceed while a writer holds the database
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous = NORMAL")

            for stmt in SCHEMA:
                conn.execute(stmt)

            conn.execute(
                """
                INSERT INTO metadata (key, value) VALUES ('schema_version', ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                WHERE CAST(value AS INTEGER) < CAST(excluded.value AS INTEGER)
                """,
                (str(SCHEMA_VERSION),),
            )

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection, translating storage faults to StoreUnavailable."""
        if self._memory_conn is not None:
            if not self._memory_lock.acquire(timeout=self.timeout):
                raise StoreUnavailable("Timed out waiting for the credential store")
            try:
                with self._translate_errors():
                    yield self._memory_conn
            finally:
                self._memory_lock.release()
            return

        with self._translate_errors():
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            with self._translate_errors():
                conn.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)}")
                yield conn
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Credential store error: {e}")
            raise StoreUnavailable(f"Credential store unavailable: {e}") from e

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def put(self, credential: Credential, proof: Proof) -> StoredCredential:
        """
        Persist a signed credential.

        Raises:
            ConflictError: A credential with the same id already exists.
            StoreUnavailable: The store did not answer within its timeout.
        """
        now = format_timestamp(self._clock())
        document = json.dumps(credential.to_document(), ensure_ascii=False)
        proof_json = json.dumps(proof.to_document(), ensure_ascii=False)

        with self._writers.hold(credential.id, self.timeout):
            with self._get_connection() as conn:
                try:
                    conn.execute(
                        """
                        INSERT INTO credentials
                            (credential_id, document, proof, status, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (credential.id, document, proof_json, CredentialStatus.ACTIVE.value, now, now),
                    )
                except sqlite3.IntegrityError as e:
                    raise ConflictError(
                        f"Credential {credential.id} already exists",
                        {"credential_id": credential.id},
                    ) from e

        logger.info("Stored credential %s", credential.id)
        return self.get(credential.id)

    def revoke(self, credential_id: str, reason: Optional[str] = None) -> StoredCredential:
        """
        Mark a credential as revoked.

        Revoking an already revoked credential is a no-op; the first reason is kept.

        Raises:
            NotFoundError: The credential does not exist.
        """
        now = format_timestamp(self._clock())
        with self._writers.hold(credential_id, self.timeout):
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE credentials
                    SET status = ?, revocation_reason = ?, revoked_at = ?, updated_at = ?
                    WHERE credential_id = ? AND status = ?
                    """,
                    (
                        CredentialStatus.REVOKED.value,
                        reason,
                        now,
                        now,
                        credential_id,
                        CredentialStatus.ACTIVE.value,
                    ),
                )
                changed = cursor.rowcount > 0

        record = self.get(credential_id)
        if changed:
            logger.info("Revoked credential %s", credential_id)
        else:
            logger.debug("Credential %s was already revoked", credential_id)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, credential_id: str) -> StoredCredential:
        """
        Fetch a credential with its proof and stored status.

        Raises:
            NotFoundError: The credential does not exist.
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM credentials WHERE credential_id = ?", (credential_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Credential {credential_id} not found", {"credential_id": credential_id}
            )
        return self._row_to_record(row)

    def exists(self, credential_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM credentials WHERE credential_id = ?", (credential_id,)
            ).fetchone()
        return row is not None

    def expires_at(self, credential: Credential) -> Optional[datetime]:
        """Return when ``credential`` stops being valid, or None if it never expires.

        Raises:
            ValueError: The validity claim is present but unparseable.
        """
        for name in self.validity_claims:
            value = credential.subject_claims.get(name)
            if value is not None:
                return parse_validity_end(value)
        return None

    def credential_expired(self, credential: Credential, now: datetime) -> bool:
        now = parse_timestamp(now)
        try:
            end = self.expires_at(credential)
        except ValueError:
            logger.warning("Credential %s has an unparseable validity claim", credential.id)
            return True
        return end is not None and now >= end

    def is_expired(self, credential_id: str, now: Optional[datetime] = None) -> bool:
        """
        Return whether the credential's validity window has elapsed at ``now``.

        Derived on every call; stored status is never changed to EXPIRED.

        Raises:
            NotFoundError: The credential does not exist.
        """
        record = self.get(credential_id)
        return self.credential_expired(record.credential, now or self._clock())

    def status(self, credential_id: str, now: Optional[datetime] = None) -> CredentialStatus:
        """Return the effective status, deriving EXPIRED from the clock."""
        record = self.get(credential_id)
        if record.status == CredentialStatus.REVOKED:
            return CredentialStatus.REVOKED
        if self.credential_expired(record.credential, now or self._clock()):
            return CredentialStatus.EXPIRED
        return CredentialStatus.ACTIVE

    def list_ids(
        self,
        status: Optional[CredentialStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[str]:
        """List stored credential ids in insertion order, optionally by stored status."""
        if status == CredentialStatus.EXPIRED:
            raise ValueError("EXPIRED is derived and cannot be listed from storage")
        query = "SELECT credential_id FROM credentials"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY rowid ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row["credential_id"] for row in rows]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> StoredCredential:
        return StoredCredential(
            credential=Credential.from_document(json.loads(row["document"])),
            proof=Proof.from_document(json.loads(row["proof"])),
            status=CredentialStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            revoked_at=parse_timestamp(row["revoked_at"]) if row["revoked_at"] else None,
            revocation_reason=row["revocation_reason"],
        )
