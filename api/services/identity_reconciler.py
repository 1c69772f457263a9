"""
Identity Reconciler.

Consolidates contact submissions into identity clusters. A submission of
(email, phone) goes through:

1. Normalization - validate and canonicalize the raw values
2. Cluster discovery - every contact connected to the submission by a shared
   email, a shared phone, or an existing link, across any number of hops
3. Primary election - the oldest primary in the cluster stays canonical
4. Merge - every other contact becomes a secondary pointing directly at it
5. New-record decision - a secondary is created only when the submission
   carries an email or phone the cluster has not seen yet

The whole store sequence for one submission runs inside a single store
transaction, so concurrent submissions touching the same clusters are
serialized rather than interleaved.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from api.services.contact_normalizer import NormalizedContact, normalize_contact_info
from api.services.contact_store import (
    Contact,
    ContactStore,
    LinkPrecedence,
    get_contact_store,
)
from api.services.errors import InvariantViolation

logger = logging.getLogger(__name__)


class IdentifyOutcome(str, Enum):
    """Terminal state of one identify request."""
    CREATED_PRIMARY = "created_primary"
    CREATED_SECONDARY = "created_secondary"
    CONSOLIDATED = "no_op_consolidated"


@dataclass
class ContactSummary:
    """Consolidated view of one identity cluster."""
    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "primaryContactId": self.primary_contact_id,
            "emails": self.emails,
            "phoneNumbers": self.phone_numbers,
            "secondaryContactIds": self.secondary_contact_ids,
        }


@dataclass
class IdentifyResult:
    """Result of reconciling one submission."""
    outcome: IdentifyOutcome
    primary: Contact
    contacts: list[Contact]  # primary first, then its secondaries

    @property
    def summary(self) -> ContactSummary:
        return build_contact_summary(self.primary, self.contacts)


def build_contact_summary(primary: Contact, contacts: list[Contact]) -> ContactSummary:
    """
    Build the consolidated view of a cluster.

    Emails and phone numbers are deduplicated in discovery order with the
    primary's values first. Secondary ids are sorted ascending.
    """
    emails: list[str] = []
    phone_numbers: list[str] = []
    secondary_ids: list[int] = []

    for contact in [primary] + [c for c in contacts if c.id != primary.id]:
        if contact.id != primary.id:
            secondary_ids.append(contact.id)
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phone_number and contact.phone_number not in phone_numbers:
            phone_numbers.append(contact.phone_number)

    return ContactSummary(
        primary_contact_id=primary.id,
        emails=emails,
        phone_numbers=phone_numbers,
        secondary_contact_ids=sorted(secondary_ids),
    )


def _mask(value: Optional[str]) -> Optional[str]:
    return "***" if value else None


class _LinkCache:
    """Per-request memo of link lookups made while computing a closure."""

    def __init__(self, store: ContactStore):
        self.store = store
        self._children: dict[int, list[Contact]] = {}
        self._parents: dict[int, Optional[Contact]] = {}

    def children_of(self, primary_id: int) -> list[Contact]:
        if primary_id not in self._children:
            self._children[primary_id] = self.store.find_secondaries_of(primary_id)
        return self._children[primary_id]

    def parent_of(self, contact: Contact) -> Optional[Contact]:
        if contact.linked_id not in self._parents:
            self._parents[contact.linked_id] = self.store.find_by_id(contact.linked_id)
        return self._parents[contact.linked_id]


class IdentityReconciler:
    """
    Reconciles contact submissions against the contact store.

    Holds no state between requests; everything lives in the store.
    """

    def __init__(self, store: ContactStore, logger: Optional[logging.Logger] = None):
        """
        Args:
            store: Contact store to read and mutate
            logger: Logger for reconciliation events (default: module logger)
        """
        self.store = store
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def identify(self, email: Any = None, phone_number: Any = None) -> IdentifyResult:
        """
        Reconcile a raw (email, phone) submission.

        Args:
            email: Raw email from the request
            phone_number: Raw phone number from the request

        Returns:
            IdentifyResult with the cluster's primary and all its contacts

        Raises:
            ValidationError: If the input is invalid (no store access happens)
            StoreError: If the store fails
            InvariantViolation: If the stored links are inconsistent
        """
        contact_info = normalize_contact_info(email, phone_number)
        self.logger.debug(
            f"Identify request: email={_mask(contact_info.email)} "
            f"phone={_mask(contact_info.phone_number)}"
        )

        with self.store.transaction():
            cluster = self.find_cluster(contact_info.email, contact_info.phone_number)

            if not cluster:
                created = self.store.create(
                    contact_info.email,
                    contact_info.phone_number,
                    LinkPrecedence.PRIMARY,
                )
                self.logger.info(f"No matching contacts, created primary contact {created.id}")
                return IdentifyResult(IdentifyOutcome.CREATED_PRIMARY, created, [created])

            primary = self.resolve_primary(cluster)
            self.merge_cluster(cluster, primary)
            linked = self._require_linked_contacts(primary.id)

            if not self.needs_new_contact(linked, contact_info):
                self.logger.debug(
                    f"Returning consolidated contact {primary.id} "
                    f"({len(linked)} linked contacts)"
                )
                return IdentifyResult(IdentifyOutcome.CONSOLIDATED, linked[0], linked)

            created = self.store.create(
                contact_info.email,
                contact_info.phone_number,
                LinkPrecedence.SECONDARY,
                linked_id=primary.id,
            )
            self.logger.info(
                f"New contact information, created secondary contact {created.id} "
                f"linked to primary {primary.id}"
            )
            linked = self._require_linked_contacts(primary.id)
            return IdentifyResult(IdentifyOutcome.CREATED_SECONDARY, linked[0], linked)

    def find_cluster(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> list[Contact]:
        """
        Find every contact connected to a normalized submission.

        Walks outward from the direct matches. Each pass takes the newly
        discovered contacts (the frontier), queries the store only for
        emails/phones not queried before, and follows link edges: a primary
        pulls in its secondaries, a secondary pulls in its primary and its
        siblings. The walk stops when a pass discovers no new contact id,
        so contacts reachable only through links are never missed even when
        their email/phone values were already known.

        Returns:
            The connected component ordered by (created_at, id); empty when
            nothing matches the submission
        """
        queried_emails = {email} if email else set()
        queried_phones = {phone_number} if phone_number else set()

        frontier = self.store.find_by_email_or_phone(queried_emails, queried_phones)
        if not frontier:
            return []

        links = _LinkCache(self.store)
        visited: dict[int, Contact] = {}
        passes = 0

        while frontier:
            passes += 1
            for contact in frontier:
                visited[contact.id] = contact

            new_emails: set[str] = set()
            new_phones: set[str] = set()
            discovered: list[Contact] = []

            for contact in frontier:
                if contact.email and contact.email not in queried_emails:
                    new_emails.add(contact.email)
                if contact.phone_number and contact.phone_number not in queried_phones:
                    new_phones.add(contact.phone_number)
                discovered.extend(self._link_neighbors(contact, links))

            if new_emails or new_phones:
                queried_emails |= new_emails
                queried_phones |= new_phones
                discovered.extend(self.store.find_by_email_or_phone(new_emails, new_phones))

            next_frontier: dict[int, Contact] = {}
            for contact in discovered:
                if contact.id not in visited:
                    next_frontier[contact.id] = contact
            frontier = list(next_frontier.values())

        self.logger.debug(f"Cluster closure found {len(visited)} contacts in {passes} passes")
        return sorted(visited.values(), key=lambda c: c.election_key)

    def _link_neighbors(self, contact: Contact, links: _LinkCache) -> list[Contact]:
        if contact.is_primary:
            return list(links.children_of(contact.id))

        if contact.linked_id is None:
            self.logger.warning(f"Secondary contact {contact.id} has no linked_id")
            return []

        neighbors = list(links.children_of(contact.linked_id))
        parent = links.parent_of(contact)
        if parent is not None:
            neighbors.append(parent)
        return neighbors

    def resolve_primary(self, contacts: list[Contact]) -> Contact:
        """
        Elect the canonical primary for a set of linked contacts.

        Order of preference:
        1. The oldest primary among the contacts
        2. The oldest primary referenced by the contacts' linked_ids
        3. The oldest contact regardless of precedence

        Ties on created_at are broken by the lower id.

        Raises:
            InvariantViolation: If contacts is empty
        """
        if not contacts:
            raise InvariantViolation("Cannot resolve a primary from an empty contact set")

        primaries = [c for c in contacts if c.is_primary]
        if primaries:
            return min(primaries, key=lambda c: c.election_key)

        linked_ids = {c.linked_id for c in contacts if c.linked_id is not None}
        if linked_ids:
            referenced = [c for c in self.store.find_by_ids(linked_ids) if c.is_primary]
            if referenced:
                return min(referenced, key=lambda c: c.election_key)

        fallback = min(contacts, key=lambda c: c.election_key)
        self.logger.warning(
            f"No primary found among {len(contacts)} contacts, "
            f"falling back to oldest contact {fallback.id}"
        )
        return fallback

    def merge_cluster(self, contacts: list[Contact], primary: Contact) -> None:
        """
        Make every contact a direct secondary of the given primary.

        Contacts already linked to the primary (read fresh from the store) are
        left alone, so re-running a merge on a consolidated cluster writes
        nothing. A demoted primary's own secondaries are re-pointed at the
        new primary so no secondary is left pointing at another secondary.
        """
        if not primary.is_primary:
            self.logger.warning(f"Promoting contact {primary.id} to primary")
            self.store.update(primary.id, LinkPrecedence.PRIMARY, None)

        current_ids = {c.id for c in self.get_linked_contacts(primary.id)}
        relinked: set[int] = set()

        for contact in contacts:
            if contact.id == primary.id or contact.id in current_ids or contact.id in relinked:
                continue

            self.store.update(contact.id, LinkPrecedence.SECONDARY, primary.id)
            relinked.add(contact.id)

            if contact.is_primary:
                for child in self.store.find_secondaries_of(contact.id):
                    if child.id in relinked:
                        continue
                    self.store.update(child.id, LinkPrecedence.SECONDARY, primary.id)
                    relinked.add(child.id)

        if relinked:
            self.logger.info(
                f"Merged {len(relinked)} contacts into primary {primary.id}: {sorted(relinked)}"
            )

    def get_linked_contacts(self, primary_id: int) -> list[Contact]:
        """Get a primary followed by its secondaries; empty if it doesn't exist."""
        primary = self.store.find_by_id(primary_id)
        if primary is None:
            return []
        return [primary] + self.store.find_secondaries_of(primary_id)

    def _require_linked_contacts(self, primary_id: int) -> list[Contact]:
        linked = self.get_linked_contacts(primary_id)
        if not linked:
            raise InvariantViolation(f"Primary contact {primary_id} not found after merge")
        return linked

    @staticmethod
    def needs_new_contact(linked: list[Contact], contact_info: NormalizedContact) -> bool:
        """
        Check whether a submission adds information to a cluster.

        True when the submission has an email or a phone number that no
        contact in the cluster already has.
        """
        existing_emails = {c.email for c in linked if c.email}
        existing_phones = {c.phone_number for c in linked if c.phone_number}

        has_new_email = bool(contact_info.email) and contact_info.email not in existing_emails
        has_new_phone = bool(contact_info.phone_number) and contact_info.phone_number not in existing_phones
        return has_new_email or has_new_phone


# Singleton instance
_identity_reconciler: Optional[IdentityReconciler] = None


def get_identity_reconciler() -> IdentityReconciler:
    """Get singleton IdentityReconciler bound to the shared contact store."""
    global _identity_reconciler
    if _identity_reconciler is None:
        _identity_reconciler = IdentityReconciler(get_contact_store(), logger=logger)
    return _identity_reconciler


def reset_identity_reconciler() -> None:
    """Reset the singleton (for testing)."""
    global _identity_reconciler
    _identity_reconciler = None
