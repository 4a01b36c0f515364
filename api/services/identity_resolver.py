"""
Identity Resolver for customer identity reconciliation.

Given an (email, phone) pair, finds every contact that shares either value,
merges the clusters those contacts belong to under the oldest primary, and
records the pair as a new secondary when it carries information the
cluster has not seen yet.

Resolution flow:
1. Exact match on email OR phone
2. No match -> new primary
3. Expand each match to its full cluster and union them
4. Oldest primary wins; every other primary is demoted onto it and its
   secondaries are re-pointed so links stay single-hop
5. New email or phone -> new secondary under the winner
6. Consolidated view of the resulting cluster

The whole flow runs inside one store transaction, so two requests racing
on the same identifiers cannot both create a primary.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from api.services.contact_store import (
    Contact,
    ContactStore,
    LinkPrecedence,
    get_contact_store,
)
from api.services.errors import EmptyClusterError, MissingPrimaryError

logger = logging.getLogger(__name__)


@dataclass
class ConsolidatedView:
    """Everything known about one identity, primary values first."""

    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Wire shape used by the HTTP layer and the admin script."""
        return {
            "primaryContactId": self.primary_contact_id,
            "emails": list(self.emails),
            "phoneNumbers": list(self.phone_numbers),
            "secondaryContactIds": list(self.secondary_contact_ids),
        }


def _distinct(values: Iterable[Optional[str]]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value is not None and value not in seen:
            seen[value] = None
    return list(seen)


def _primary_first(values: list[str], primary_value: Optional[str]) -> list[str]:
    if primary_value is None or primary_value not in values:
        return values
    return [primary_value] + [v for v in values if v != primary_value]


def consolidate(contacts: list[Contact]) -> ConsolidatedView:
    """
    Build the consolidated view of one cluster.

    Emails and phone numbers are deduplicated in creation order, then the
    primary's own values are moved to the front.

    Args:
        contacts: Members of a single cluster, in any order

    Returns:
        ConsolidatedView for the cluster

    Raises:
        EmptyClusterError: if contacts is empty
        MissingPrimaryError: if no contact is a primary
    """
    if not contacts:
        raise EmptyClusterError()

    ordered = sorted(contacts, key=Contact.sort_key)
    primary = next((c for c in ordered if c.is_primary), None)
    if primary is None:
        raise MissingPrimaryError()

    emails = _primary_first(_distinct(c.email for c in ordered), primary.email)
    phone_numbers = _primary_first(
        _distinct(c.phone_number for c in ordered), primary.phone_number
    )

    return ConsolidatedView(
        primary_contact_id=primary.id,
        emails=emails,
        phone_numbers=phone_numbers,
        secondary_contact_ids=[c.id for c in ordered if not c.is_primary],
    )


class IdentityResolver:
    """
    Resolves submitted contact details to one canonical identity.

    The store is injected so any ContactStore implementation works.
    """

    def __init__(self, store: ContactStore):
        """
        Initialize resolver.

        Args:
            store: Contact storage collaborator
        """
        self.store = store

    def identify(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> ConsolidatedView:
        """
        Resolve an (email, phone) pair to its consolidated identity.

        Callers pass normalized values; empty strings count as absent.

        Args:
            email: Normalized email, or None
            phone_number: Normalized phone number, or None

        Returns:
            ConsolidatedView of the identity the pair belongs to
        """
        email = email or None
        phone_number = phone_number or None

        with self.store.transaction():
            matches = self.store.find_by_exact_match(email, phone_number)
            logger.debug(f"identify: {len(matches)} exact matches")

            if not matches:
                contact = self.store.insert(email, phone_number, LinkPrecedence.PRIMARY)
                logger.info(f"Created primary contact {contact.id}")
                return consolidate([contact])

            cluster = self._union_clusters(matches)
            primary = self._oldest_primary(cluster)

            if self._merge_into(primary, cluster):
                cluster = self.store.find_cluster(primary.id)

            if self._has_new_information(email, phone_number, cluster):
                contact = self.store.insert(
                    email,
                    phone_number,
                    LinkPrecedence.SECONDARY,
                    linked_id=primary.id,
                )
                logger.info(f"Created secondary contact {contact.id} under primary {primary.id}")
                cluster.append(contact)

            return consolidate(cluster)

    def _union_clusters(self, matches: list[Contact]) -> list[Contact]:
        """Expand each match to its cluster and deduplicate by id."""
        union: dict[int, Contact] = {}
        for match in sorted(matches, key=Contact.sort_key):
            for contact in self.store.find_cluster(match.id):
                union.setdefault(contact.id, contact)
        return sorted(union.values(), key=Contact.sort_key)

    @staticmethod
    def _oldest_primary(cluster: list[Contact]) -> Contact:
        primaries = [c for c in cluster if c.is_primary]
        if not primaries:
            raise MissingPrimaryError("No primary contact found in linked contacts")
        return min(primaries, key=Contact.sort_key)

    def _merge_into(self, primary: Contact, cluster: list[Contact]) -> bool:
        """
        Demote every other primary in the cluster onto primary.

        Returns:
            True if anything was demoted
        """
        demoted: set[int] = set()
        for contact in cluster:
            if not contact.is_primary or contact.id == primary.id or contact.id in demoted:
                continue
            self.store.demote(contact.id, primary.id)
            moved = self.store.relink_secondaries(contact.id, primary.id)
            demoted.add(contact.id)
            logger.info(
                f"Merged primary {contact.id} into {primary.id} "
                f"({moved} secondaries re-linked)"
            )
        return bool(demoted)

    @staticmethod
    def _has_new_information(
        email: Optional[str], phone_number: Optional[str], cluster: list[Contact]
    ) -> bool:
        known_emails = {c.email for c in cluster if c.email is not None}
        known_phones = {c.phone_number for c in cluster if c.phone_number is not None}
        new_email = email is not None and email not in known_emails
        new_phone = phone_number is not None and phone_number not in known_phones
        return new_email or new_phone


# Singleton instance
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    """Get or create the singleton IdentityResolver over the configured store."""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver(get_contact_store())
    return _identity_resolver


def reset_identity_resolver() -> None:
    """Drop the singleton so the next call rebuilds it (for tests)."""
    global _identity_resolver
    _identity_resolver = None
