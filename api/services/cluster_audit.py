"""
Cluster integrity audit.

Checks stored contacts against the linking rules every cluster must obey:
one primary, secondaries pointing directly at it, no self links, and at
least one identifier per contact. Damaged links (chains, dangling
references, cycles) can be flattened back onto their ultimate primary.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from api.services.contact_store import Contact, ContactStore, LinkPrecedence

logger = logging.getLogger(__name__)

SELF_LINK = "self_link"
MISSING_LINK = "missing_link"
PRIMARY_WITH_LINK = "primary_with_link"
DANGLING_LINK = "dangling_link"
CHAINED_LINK = "chained_link"
NO_IDENTIFIERS = "no_identifiers"


@dataclass
class LinkViolation:
    """A contact that breaks a linking rule."""
    contact_id: int
    kind: str
    detail: str


@dataclass
class LinkRepair:
    """A planned (or applied) fix for one contact."""
    contact_id: int
    link_precedence: LinkPrecedence
    linked_id: Optional[int]
    reason: str


def find_link_violations(store: ContactStore) -> list[LinkViolation]:
    """Scan every live contact and report rule violations."""
    contacts = store.get_all()
    by_id = {c.id: c for c in contacts}
    violations = []

    for contact in contacts:
        if not contact.email and not contact.phone_number:
            violations.append(LinkViolation(contact.id, NO_IDENTIFIERS, "no email or phone number"))

        if contact.linked_id is not None and contact.linked_id == contact.id:
            violations.append(LinkViolation(contact.id, SELF_LINK, "linked_id points at itself"))
            continue

        if contact.is_primary:
            if contact.linked_id is not None:
                violations.append(LinkViolation(
                    contact.id, PRIMARY_WITH_LINK, f"primary linked to {contact.linked_id}"
                ))
            continue

        if contact.linked_id is None:
            violations.append(LinkViolation(contact.id, MISSING_LINK, "secondary without linked_id"))
        elif contact.linked_id not in by_id:
            violations.append(LinkViolation(
                contact.id, DANGLING_LINK, f"linked to missing contact {contact.linked_id}"
            ))
        elif not by_id[contact.linked_id].is_primary:
            violations.append(LinkViolation(
                contact.id, CHAINED_LINK, f"linked to secondary {contact.linked_id}"
            ))

    return violations


def _trace_link(contact: Contact, by_id: dict[int, Contact]) -> tuple[str, int]:
    """
    Follow a secondary's links until they end.

    Returns ``("primary", id)`` when the walk reaches a live primary.
    Otherwise returns an orphan group key shared by every contact whose
    walk ends the same way: ``("dangling", id)`` for a link to a missing
    contact, ``("cycle", id)`` keyed by the cycle's lowest id, and
    ``("detached", id)`` for a chain whose head has no link.
    """
    path: list[Contact] = []
    position: dict[int, int] = {}
    current = contact

    while not current.is_primary:
        if current.id in position:
            cycle = path[position[current.id]:]
            return ("cycle", min(c.id for c in cycle))

        position[current.id] = len(path)
        path.append(current)

        if current.linked_id is None or current.linked_id == current.id:
            return ("detached", current.id)
        parent = by_id.get(current.linked_id)
        if parent is None:
            return ("dangling", current.linked_id)
        current = parent

    return ("primary", current.id)


def plan_link_repairs(store: ContactStore) -> list[LinkRepair]:
    """
    Work out the writes needed to flatten every cluster onto one primary.

    Secondaries whose links end without reaching a primary are grouped by
    where the walk ended. The oldest contact of each group is promoted and
    the rest of the group is re-pointed at it, so an orphaned cluster stays
    one cluster.
    """
    contacts = store.get_all()
    by_id = {c.id: c for c in contacts}
    repairs = []
    orphan_groups: dict[tuple[str, int], list[Contact]] = {}

    for contact in contacts:
        if contact.is_primary:
            if contact.linked_id is not None:
                repairs.append(LinkRepair(contact.id, LinkPrecedence.PRIMARY, None, "clear primary link"))
            continue

        kind, target_id = _trace_link(contact, by_id)
        if kind != "primary":
            orphan_groups.setdefault((kind, target_id), []).append(contact)
        elif contact.linked_id != target_id:
            repairs.append(LinkRepair(
                contact.id, LinkPrecedence.SECONDARY, target_id, f"re-point at root {target_id}"
            ))

    for members in orphan_groups.values():
        root = min(members, key=lambda c: c.election_key)
        repairs.append(LinkRepair(root.id, LinkPrecedence.PRIMARY, None, "promote orphaned secondary"))
        for contact in members:
            if contact.id != root.id and contact.linked_id != root.id:
                repairs.append(LinkRepair(
                    contact.id, LinkPrecedence.SECONDARY, root.id, f"re-point at root {root.id}"
                ))

    return repairs


def repair_link_violations(store: ContactStore, dry_run: bool = True) -> list[LinkRepair]:
    """
    Flatten damaged clusters.

    Args:
        store: Contact store to repair
        dry_run: If True, only plan the repairs

    Returns:
        The repairs planned (dry run) or applied
    """
    with store.transaction():
        repairs = plan_link_repairs(store)
        if dry_run:
            return repairs

        for repair in repairs:
            store.update(repair.contact_id, repair.link_precedence, repair.linked_id)
            logger.info(f"Repaired contact {repair.contact_id}: {repair.reason}")

    return repairs
