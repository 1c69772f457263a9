"""
Contact Store for identity reconciliation.

SQLite-backed storage for contact records. Each contact belongs to exactly
one identity cluster: a single primary record plus any number of secondary
records whose linked_id points directly at that primary.

Soft-deleted rows (deleted_at set) are invisible to every query here.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional

from api.services.errors import InvariantViolation, StoreError
from api.utils.datetime_utils import parse_timestamp
from api.utils.db_paths import get_contacts_db_path

logger = logging.getLogger(__name__)

# Stay well below SQLite's host parameter limit for IN (...) lists
QUERY_CHUNK_SIZE = 500

CONTACT_COLUMNS = (
    "id, email, phone_number, link_precedence, linked_id, "
    "created_at, updated_at, deleted_at"
)


class LinkPrecedence(str, Enum):
    """Role of a contact within its cluster."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class Contact:
    """A single contact submission record."""

    id: int
    email: Optional[str]
    phone_number: Optional[str]
    link_precedence: LinkPrecedence
    linked_id: Optional[int]  # FK to the cluster's primary (secondaries only)
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def election_key(self) -> tuple[datetime, int]:
        """Sort key for primary election: oldest first, ties by insertion order."""
        return (self.created_at, self.id)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "linkPrecedence": self.link_precedence.value,
            "linkedId": self.linked_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "deletedAt": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Contact":
        """Create Contact from SQLite row."""
        return cls(
            id=row["id"],
            email=row["email"],
            phone_number=row["phone_number"],
            link_precedence=LinkPrecedence(row["link_precedence"]),
            linked_id=row["linked_id"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            deleted_at=parse_timestamp(row["deleted_at"]),
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(dt: datetime) -> str:
    # Fixed-width ISO strings so ORDER BY created_at sorts chronologically
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _chunked(values: list, size: int = QUERY_CHUNK_SIZE) -> Iterator[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


@contextmanager
def _store_operation(action: str):
    """Log and wrap SQLite failures as StoreError."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Contact store failed to {action}: {e}")
        raise StoreError(f"Failed to {action}") from e


class ContactStore:
    """
    SQLite-backed contact storage.

    Calls made inside ``transaction()`` share one connection holding SQLite's
    write lock, so a whole reconciliation (closure, merge, create) runs as a
    single serialized unit. Calls made outside it autocommit individually.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize contact store.

        Args:
            db_path: Path to SQLite database (default from settings)
            clock: Source of creation/update timestamps (default: UTC now)
        """
        self.db_path = db_path or get_contacts_db_path()
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._local = threading.local()
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        with _store_operation("initialize contact database"):
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS contacts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        email TEXT,
                        phone_number TEXT,
                        link_precedence TEXT NOT NULL
                            CHECK (link_precedence IN ('primary', 'secondary')),
                        linked_id INTEGER REFERENCES contacts(id),
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        deleted_at TEXT,
                        CHECK (email IS NOT NULL OR phone_number IS NOT NULL),
                        CHECK (linked_id IS NULL OR linked_id != id)
                    )
                """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(email)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_contacts_phone ON contacts(phone_number)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_contacts_linked_id ON contacts(linked_id)"
                )
                conn.commit()
                logger.info(f"Initialized contact database at {self.db_path}")
            finally:
                conn.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the open transaction's connection, or a short-lived one."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator["ContactStore"]:
        """
        Run a block of store calls as one serialized write transaction.

        Re-entrant: a nested ``transaction()`` joins the outer one.
        """
        if getattr(self._local, "conn", None) is not None:
            yield self
            return

        with self._lock:
            with _store_operation("begin transaction"):
                conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
                conn.row_factory = sqlite3.Row
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error:
                    conn.close()
                    raise

            self._local.conn = conn
            try:
                try:
                    yield self
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                with _store_operation("commit transaction"):
                    conn.execute("COMMIT")
            finally:
                self._local.conn = None
                conn.close()

    def _select(self, conn: sqlite3.Connection, where: str, params: list) -> list[Contact]:
        cursor = conn.execute(
            f"SELECT {CONTACT_COLUMNS} FROM contacts "
            f"WHERE ({where}) AND deleted_at IS NULL "
            f"ORDER BY created_at, id",
            params,
        )
        return [Contact.from_row(row) for row in cursor.fetchall()]

    def find_by_email_or_phone(
        self,
        emails: Iterable[str],
        phones: Iterable[str],
    ) -> list[Contact]:
        """
        Find live contacts whose email or phone is in the given sets.

        Args:
            emails: Normalized emails to match
            phones: Normalized phone numbers to match

        Returns:
            Matching contacts ordered by (created_at, id)
        """
        email_list = sorted({e for e in emails if e})
        phone_list = sorted({p for p in phones if p})
        if not email_list and not phone_list:
            return []

        found: dict[int, Contact] = {}
        with _store_operation("find matching contacts"):
            with self._connection() as conn:
                for column, values in (("email", email_list), ("phone_number", phone_list)):
                    for chunk in _chunked(values):
                        placeholders = ",".join("?" * len(chunk))
                        for contact in self._select(conn, f"{column} IN ({placeholders})", chunk):
                            found[contact.id] = contact

        return sorted(found.values(), key=lambda c: c.election_key)

    def find_by_id(self, contact_id: int) -> Optional[Contact]:
        """Get a live contact by id."""
        with _store_operation("find contact by id"):
            with self._connection() as conn:
                results = self._select(conn, "id = ?", [contact_id])
        return results[0] if results else None

    def find_by_ids(self, contact_ids: Iterable[int]) -> list[Contact]:
        """Get live contacts by id, ordered by (created_at, id)."""
        id_list = sorted(set(contact_ids))
        if not id_list:
            return []

        results: list[Contact] = []
        with _store_operation("find contacts by id"):
            with self._connection() as conn:
                for chunk in _chunked(id_list):
                    placeholders = ",".join("?" * len(chunk))
                    results.extend(self._select(conn, f"id IN ({placeholders})", chunk))

        return sorted(results, key=lambda c: c.election_key)

    def find_secondaries_of(self, primary_id: int) -> list[Contact]:
        """Get live contacts whose linked_id points at the given contact."""
        with _store_operation("find linked contacts"):
            with self._connection() as conn:
                return self._select(conn, "linked_id = ?", [primary_id])

    def get_all(self) -> list[Contact]:
        """Get every live contact."""
        with _store_operation("list contacts"):
            with self._connection() as conn:
                return self._select(conn, "1 = 1", [])

    def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """
        Create a contact. The store assigns id and created_at.

        Raises:
            InvariantViolation: If the record would break a linking rule
            StoreError: If the insert fails
        """
        if not email and not phone_number:
            raise InvariantViolation("Contact requires an email or phone number")
        self._check_link(link_precedence, linked_id)

        now = _format_timestamp(self._clock())
        with _store_operation(f"create {link_precedence.value} contact"):
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO contacts
                    (email, phone_number, link_precedence, linked_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        email or None,
                        phone_number or None,
                        link_precedence.value,
                        linked_id,
                        now,
                        now,
                    ),
                )
                contact_id = cursor.lastrowid
                created = self._select(conn, "id = ?", [contact_id])[0]

        logger.debug(f"Created {link_precedence.value} contact {contact_id} (linked_id={linked_id})")
        return created

    def update(
        self,
        contact_id: int,
        link_precedence: LinkPrecedence,
        linked_id: Optional[int],
    ) -> None:
        """
        Set a contact's precedence and link.

        Raises:
            InvariantViolation: If the link would point at the contact itself
                or disagree with the precedence
            StoreError: If the update fails
        """
        if linked_id is not None and linked_id == contact_id:
            raise InvariantViolation(f"Contact {contact_id} cannot link to itself")
        self._check_link(link_precedence, linked_id)

        with _store_operation("update contact link"):
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE contacts
                    SET link_precedence = ?, linked_id = ?, updated_at = ?
                    WHERE id = ? AND deleted_at IS NULL
                """,
                    (
                        link_precedence.value,
                        linked_id,
                        _format_timestamp(self._clock()),
                        contact_id,
                    ),
                )
                updated = cursor.rowcount

        if not updated:
            logger.warning(f"Update skipped: contact {contact_id} not found")

    def soft_delete(self, contact_id: int) -> bool:
        """Mark a contact deleted. Returns False if it was not live."""
        now = _format_timestamp(self._clock())
        with _store_operation("delete contact"):
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE contacts SET deleted_at = ?, updated_at = ?
                    WHERE id = ? AND deleted_at IS NULL
                """,
                    (now, now, contact_id),
                )
                return cursor.rowcount > 0

    @staticmethod
    def _check_link(link_precedence: LinkPrecedence, linked_id: Optional[int]) -> None:
        if link_precedence == LinkPrecedence.SECONDARY and linked_id is None:
            raise InvariantViolation("Secondary contact requires a linked_id")
        if link_precedence == LinkPrecedence.PRIMARY and linked_id is not None:
            raise InvariantViolation("Primary contact cannot have a linked_id")


# Singleton instance
_contact_store: Optional[ContactStore] = None


def get_contact_store(db_path: Optional[str] = None) -> ContactStore:
    """
    Get or create the singleton ContactStore.

    Args:
        db_path: Path to SQLite database

    Returns:
        ContactStore instance
    """
    global _contact_store
    if _contact_store is None:
        _contact_store = ContactStore(db_path)
    return _contact_store


def reset_contact_store() -> None:
    """Reset the singleton (for testing)."""
    global _contact_store
    _contact_store = None
