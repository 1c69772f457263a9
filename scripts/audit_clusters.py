#!/usr/bin/env python3
"""
Audit and repair identity cluster links.

Reports contacts that break the cluster rules (secondaries pointing at other
secondaries, dangling or self links, primaries with a link) and optionally
flattens every cluster back onto its oldest reachable primary.

Usage:
    # Report violations and planned repairs (dry run, default)
    python scripts/audit_clusters.py

    # Apply repairs
    python scripts/audit_clusters.py --execute

    # Audit a specific database
    python scripts/audit_clusters.py --db data/contacts.db
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import logging

from api.services.cluster_audit import find_link_violations, repair_link_violations
from api.services.contact_store import ContactStore

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit identity cluster links")
    parser.add_argument("--db", help="Path to contacts database (default from settings)")
    parser.add_argument("--execute", action="store_true", help="Apply repairs (default is dry run)")
    args = parser.parse_args()

    store = ContactStore(args.db)

    violations = find_link_violations(store)
    logger.info(f"Found {len(violations)} link violations")
    for violation in violations:
        logger.info(f"  contact {violation.contact_id}: {violation.kind} ({violation.detail})")

    repairs = repair_link_violations(store, dry_run=not args.execute)
    verb = "Applied" if args.execute else "Would apply"
    logger.info(f"{verb} {len(repairs)} repairs")
    for repair in repairs:
        logger.info(f"  contact {repair.contact_id}: {repair.reason}")

    if not args.execute and repairs:
        logger.info("Dry run - rerun with --execute to apply")

    return 1 if violations and not args.execute else 0


if __name__ == "__main__":
    sys.exit(main())
