"""
Contact Store for identity reconciliation.

Persists contact records and answers the lookups the identity resolver
needs: exact email/phone matches, cluster expansion, inserts, demotions.

Two implementations share one contract:
- SQLiteContactStore: production storage, one row per contact
- InMemoryContactStore: dict-backed, for tests and ephemeral deployments

A cluster is one primary plus every secondary whose linked_id points at
it. Secondaries always point at the primary directly; anything else is a
link chain and is reported, never silently followed without a warning.
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional

from config.settings import settings

from api.services.errors import (
    InvalidInputError,
    LinkChainError,
    NotFoundError,
    StorageError,
)
from api.utils.datetime_utils import make_aware, parse_timestamp, utc_now
from api.utils.db_paths import get_contact_db_path

logger = logging.getLogger(__name__)


class LinkPrecedence(str, Enum):
    """Whether a contact is the canonical record of its cluster."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class Contact:
    """
    A single contact record.

    email and phone_number are stored normalized; at least one is set.
    linked_id is set only for secondaries and names the cluster's primary.
    """

    id: int
    email: Optional[str] = None
    phone_number: Optional[str] = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    active: bool = True

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def primary_id(self) -> Optional[int]:
        """The id of this record's primary (its own id if it is one)."""
        return self.id if self.is_primary else self.linked_id

    def sort_key(self) -> tuple[datetime, int]:
        """Creation order, oldest first; id breaks timestamp ties."""
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
            "updatedAt": self.updated_at.isoformat(),
            "active": self.active,
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
            active=bool(row["active"]),
        )


def _to_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return utc_now()
    return make_aware(dt).astimezone(timezone.utc)


def _format_ts(dt: datetime) -> str:
    # Fixed-width so lexical order in SQL matches chronological order
    return dt.isoformat(timespec="microseconds")


class ContactStore(ABC):
    """
    Storage contract consumed by the identity resolver.

    Implementations provide the primitives; cluster resolution and link
    auditing are shared.
    """

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def transaction(self):
        """
        Context manager running the enclosed operations as one isolated,
        atomic unit of work. Nested calls join the outer transaction.
        """

    @abstractmethod
    def find_by_exact_match(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> list[Contact]:
        """Active contacts whose email OR phone equals the given value."""

    @abstractmethod
    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> Contact:
        """Insert a new contact with a fresh id."""

    @abstractmethod
    def demote(self, contact_id: int, new_primary_id: int) -> Contact:
        """Make a contact a secondary of new_primary_id."""

    @abstractmethod
    def relink_secondaries(self, from_primary_id: int, to_primary_id: int) -> int:
        """Point every secondary of from_primary_id at to_primary_id."""

    @abstractmethod
    def deactivate(self, contact_id: int) -> Contact:
        """Soft-remove a contact from all queries."""

    @abstractmethod
    def count(self) -> int:
        """Number of active contacts."""

    @abstractmethod
    def _lookup(self, contact_id: int) -> Optional[Contact]:
        """Fetch a contact by id, active or not."""

    @abstractmethod
    def _cluster_members(self, primary_id: int) -> list[Contact]:
        """Active contacts whose id or linked_id equals primary_id."""

    @abstractmethod
    def _active_secondaries(self) -> list[Contact]:
        """Every active secondary contact."""

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    def get_by_id(self, contact_id: int) -> Contact:
        """
        Get an active contact by ID.

        Raises:
            NotFoundError: if the id is unknown or inactive
        """
        contact = self._lookup(contact_id)
        if contact is None or not contact.active:
            raise NotFoundError(contact_id)
        return contact

    def resolve_primary_id(self, contact: Contact) -> int:
        """
        Follow a contact's link to the primary of its cluster.

        A secondary pointing at another secondary is a link chain. It is
        followed to the end with a warning; find_cluster pulls in every
        record on the chain so reads stay correct until it is repaired.

        Raises:
            LinkChainError: on a dangling link or a cycle
        """
        seen = {contact.id}
        current = contact
        hops = 0
        while not current.is_primary:
            target_id = current.linked_id
            target = self._lookup(target_id) if target_id is not None else None
            if target is None or not target.active:
                raise LinkChainError(
                    contact.id,
                    f"Contact {contact.id} links to missing contact {target_id}",
                )
            if target.id in seen:
                raise LinkChainError(
                    contact.id, f"Contact {contact.id} is part of a link cycle"
                )
            seen.add(target.id)
            current = target
            hops += 1

        if hops > 1:
            logger.warning(
                f"Contact {contact.id} reaches primary {current.id} through {hops} links"
            )
        return current.id

    def find_cluster(self, contact_id: int) -> list[Contact]:
        """
        Get every active contact in the same cluster as contact_id.

        Secondaries reached through a link chain are included, so a
        chained record is still part of its own cluster.

        Returns:
            Contacts ordered by created_at ascending, primary first;
            empty if contact_id is unknown or inactive
        """
        contact = self._lookup(contact_id)
        if contact is None or not contact.active:
            return []
        primary_id = self.resolve_primary_id(contact)

        members = {c.id: c for c in self._cluster_members(primary_id)}
        pending = [cid for cid in members if cid != primary_id]
        while pending:
            for linked in self._cluster_members(pending.pop()):
                if linked.id not in members:
                    members[linked.id] = linked
                    pending.append(linked.id)
        return sorted(members.values(), key=Contact.sort_key)

    def find_link_chains(self) -> list[Contact]:
        """
        Find active secondaries whose link target is not an active primary.

        Returns:
            Offending contacts ordered by id
        """
        chained = []
        for contact in self._active_secondaries():
            target = self._lookup(contact.linked_id) if contact.linked_id is not None else None
            if target is None or not target.active or not target.is_primary:
                chained.append(contact)
        return sorted(chained, key=lambda c: c.id)

    def _check_insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int],
    ) -> None:
        if email is None and phone_number is None:
            raise InvalidInputError("A contact needs an email or a phone number")
        if link_precedence == LinkPrecedence.PRIMARY and linked_id is not None:
            raise InvalidInputError("A primary contact cannot have a linked_id")
        if link_precedence == LinkPrecedence.SECONDARY:
            if linked_id is None:
                raise InvalidInputError("A secondary contact needs a linked_id")
            target = self.get_by_id(linked_id)
            if not target.is_primary:
                raise LinkChainError(
                    linked_id,
                    f"Cannot link to contact {linked_id}: it is not a primary",
                )

    def _check_demote(self, contact_id: int, new_primary_id: int) -> Optional[Contact]:
        """Validate a demotion; returns the contact if it is already done."""
        if contact_id == new_primary_id:
            raise InvalidInputError(f"Contact {contact_id} cannot link to itself")
        contact = self.get_by_id(contact_id)
        target = self.get_by_id(new_primary_id)
        if not contact.is_primary and contact.linked_id == new_primary_id:
            return contact
        if not target.is_primary:
            raise LinkChainError(
                new_primary_id,
                f"Cannot link to contact {new_primary_id}: it is not a primary",
            )
        return None

    def _check_deactivate(self, contact: Contact) -> None:
        if contact.is_primary and len(self._cluster_members(contact.id)) > 1:
            raise InvalidInputError(
                f"Contact {contact.id} is a primary with active secondaries"
            )


class SQLiteContactStore(ContactStore):
    """
    SQLite-backed contact storage.

    Outside a transaction every statement autocommits on its own
    connection. Inside transaction() a single connection is bound to the
    calling thread and BEGIN IMMEDIATE takes the write lock up front, so
    concurrent resolutions of the same identifiers serialize.
    """

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize contact store.

        Args:
            db_path: Path to SQLite database (default from settings)
            timeout: Seconds to wait on a locked database (default from settings)
        """
        self.db_path = db_path or get_contact_db_path()
        self.timeout = timeout if timeout is not None else settings.sqlite_timeout
        self._local = threading.local()
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contacts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT,
                    phone_number TEXT,
                    linked_id INTEGER REFERENCES contacts(id) ON DELETE SET NULL,
                    link_precedence TEXT NOT NULL DEFAULT 'primary'
                        CHECK (link_precedence IN ('primary', 'secondary')),
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    CHECK (email IS NOT NULL OR phone_number IS NOT NULL)
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

            # Out-of-band edits still bump updated_at
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS trg_contacts_updated_at
                AFTER UPDATE ON contacts
                FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
                BEGIN
                    UPDATE contacts
                    SET updated_at = strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')
                    WHERE id = NEW.id;
                END
            """
            )
        logger.info(f"Initialized contact database at {self.db_path}")

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open contact database {self.db_path}: {e}") from e
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the transaction's connection, or a short-lived one."""
        bound = getattr(self._local, "conn", None)
        if bound is not None:
            try:
                yield bound
            except sqlite3.Error as e:
                raise StorageError(f"Contact store operation failed: {e}") from e
            return

        conn = self._open()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Contact store operation failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        conn = self._open()
        self._local.conn = conn
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot start contact transaction: {e}") from e

            try:
                yield
            except BaseException:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.exception("Rollback of contact transaction failed")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot commit contact transaction: {e}") from e
        finally:
            self._local.conn = None
            conn.close()

    def find_by_exact_match(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> list[Contact]:
        if email is None and phone_number is None:
            return []
        with self._connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM contacts
                WHERE active = 1 AND (email = ? OR phone_number = ?)
            """,
                (email, phone_number),
            )
            return [Contact.from_row(row) for row in cursor.fetchall()]

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> Contact:
        link_precedence = LinkPrecedence(link_precedence)
        with self.transaction():
            self._check_insert(email, phone_number, link_precedence, linked_id)
            created = _to_utc(created_at)
            now = utc_now()
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO contacts
                    (email, phone_number, linked_id, link_precedence, created_at, updated_at, active)
                    VALUES (?, ?, ?, ?, ?, ?, 1)
                """,
                    (
                        email,
                        phone_number,
                        linked_id,
                        link_precedence.value,
                        _format_ts(created),
                        _format_ts(now),
                    ),
                )
                contact_id = cursor.lastrowid

        logger.debug(f"Inserted {link_precedence.value} contact {contact_id}")
        return Contact(
            id=contact_id,
            email=email,
            phone_number=phone_number,
            link_precedence=link_precedence,
            linked_id=linked_id,
            created_at=created,
            updated_at=now,
        )

    def demote(self, contact_id: int, new_primary_id: int) -> Contact:
        with self.transaction():
            existing = self._check_demote(contact_id, new_primary_id)
            if existing is not None:
                return existing
            with self._connection() as conn:
                conn.execute(
                    """
                    UPDATE contacts
                    SET link_precedence = ?, linked_id = ?, updated_at = ?
                    WHERE id = ?
                """,
                    (
                        LinkPrecedence.SECONDARY.value,
                        new_primary_id,
                        _format_ts(utc_now()),
                        contact_id,
                    ),
                )
            return self.get_by_id(contact_id)

    def relink_secondaries(self, from_primary_id: int, to_primary_id: int) -> int:
        if from_primary_id == to_primary_id:
            return 0
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE contacts
                SET linked_id = ?, updated_at = ?
                WHERE linked_id = ? AND link_precedence = ?
            """,
                (
                    to_primary_id,
                    _format_ts(utc_now()),
                    from_primary_id,
                    LinkPrecedence.SECONDARY.value,
                ),
            )
            return cursor.rowcount

    def deactivate(self, contact_id: int) -> Contact:
        with self.transaction():
            contact = self.get_by_id(contact_id)
            self._check_deactivate(contact)
            with self._connection() as conn:
                conn.execute(
                    "UPDATE contacts SET active = 0, updated_at = ? WHERE id = ?",
                    (_format_ts(utc_now()), contact_id),
                )
        logger.info(f"Deactivated contact {contact_id}")
        return replace(contact, active=False)

    def count(self) -> int:
        with self._connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM contacts WHERE active = 1")
            return cursor.fetchone()[0]

    def _lookup(self, contact_id: int) -> Optional[Contact]:
        with self._connection() as conn:
            cursor = conn.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,))
            row = cursor.fetchone()
            if row:
                return Contact.from_row(row)
            return None

    def _cluster_members(self, primary_id: int) -> list[Contact]:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM contacts
                WHERE active = 1 AND (id = ? OR linked_id = ?)
                ORDER BY created_at ASC, id ASC
            """,
                (primary_id, primary_id),
            )
            return [Contact.from_row(row) for row in cursor.fetchall()]

    def _active_secondaries(self) -> list[Contact]:
        with self._connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM contacts WHERE active = 1 AND link_precedence = ?",
                (LinkPrecedence.SECONDARY.value,),
            )
            return [Contact.from_row(row) for row in cursor.fetchall()]


class InMemoryContactStore(ContactStore):
    """
    Dict-backed contact storage.

    Transactions hold a re-entrant lock and restore a snapshot if the
    enclosed block raises. Returned contacts are copies.
    """

    def __init__(self):
        self._contacts: dict[int, Contact] = {}
        self._next_id = 1
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = {cid: replace(c) for cid, c in self._contacts.items()}
            next_id = self._next_id
            self._depth = 1
            try:
                yield
            except BaseException:
                self._contacts = snapshot
                self._next_id = next_id
                raise
            finally:
                self._depth = 0

    def find_by_exact_match(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> list[Contact]:
        with self._lock:
            return [
                replace(c)
                for c in self._contacts.values()
                if c.active
                and (
                    (email is not None and c.email == email)
                    or (phone_number is not None and c.phone_number == phone_number)
                )
            ]

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> Contact:
        link_precedence = LinkPrecedence(link_precedence)
        with self.transaction():
            self._check_insert(email, phone_number, link_precedence, linked_id)
            now = utc_now()
            contact = Contact(
                id=self._next_id,
                email=email,
                phone_number=phone_number,
                link_precedence=link_precedence,
                linked_id=linked_id,
                created_at=_to_utc(created_at),
                updated_at=now,
            )
            self._contacts[contact.id] = contact
            self._next_id += 1

        logger.debug(f"Inserted {link_precedence.value} contact {contact.id}")
        return replace(contact)

    def demote(self, contact_id: int, new_primary_id: int) -> Contact:
        with self.transaction():
            existing = self._check_demote(contact_id, new_primary_id)
            if existing is not None:
                return existing
            stored = self._contacts[contact_id]
            stored.link_precedence = LinkPrecedence.SECONDARY
            stored.linked_id = new_primary_id
            stored.updated_at = utc_now()
            return replace(stored)

    def relink_secondaries(self, from_primary_id: int, to_primary_id: int) -> int:
        if from_primary_id == to_primary_id:
            return 0
        with self._lock:
            moved = 0
            now = utc_now()
            for stored in self._contacts.values():
                if not stored.is_primary and stored.linked_id == from_primary_id:
                    stored.linked_id = to_primary_id
                    stored.updated_at = now
                    moved += 1
            return moved

    def deactivate(self, contact_id: int) -> Contact:
        with self.transaction():
            contact = self.get_by_id(contact_id)
            self._check_deactivate(contact)
            stored = self._contacts[contact_id]
            stored.active = False
            stored.updated_at = utc_now()
        logger.info(f"Deactivated contact {contact_id}")
        return replace(stored)

    def count(self) -> int:
        with self._lock:
            return sum(1 for c in self._contacts.values() if c.active)

    def _lookup(self, contact_id: int) -> Optional[Contact]:
        with self._lock:
            contact = self._contacts.get(contact_id)
            return replace(contact) if contact else None

    def _cluster_members(self, primary_id: int) -> list[Contact]:
        with self._lock:
            members = [
                replace(c)
                for c in self._contacts.values()
                if c.active and (c.id == primary_id or c.linked_id == primary_id)
            ]
        return sorted(members, key=Contact.sort_key)

    def _active_secondaries(self) -> list[Contact]:
        with self._lock:
            return [replace(c) for c in self._contacts.values() if c.active and not c.is_primary]


# Singleton instance
_contact_store: Optional[ContactStore] = None


def get_contact_store(db_path: Optional[str] = None) -> ContactStore:
    """
    Get or create the singleton ContactStore.

    The backend is chosen by settings.store_backend.

    Args:
        db_path: Path to SQLite database (sqlite backend only)

    Returns:
        ContactStore instance
    """
    global _contact_store
    if _contact_store is None:
        if settings.uses_memory_store:
            _contact_store = InMemoryContactStore()
            logger.info("Using in-memory contact store")
        else:
            _contact_store = SQLiteContactStore(db_path)
    return _contact_store


def reset_contact_store() -> None:
    """Drop the singleton so the next call rebuilds it (for tests)."""
    global _contact_store
    _contact_store = None
