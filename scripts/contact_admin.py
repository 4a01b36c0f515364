#!/usr/bin/env python3
"""
Contact maintenance commands.

Inspects identities, soft-removes contacts, and audits the primary/secondary
link graph for secondaries that do not point straight at an active primary.

Usage:
    python scripts/contact_admin.py show --email a@example.com
    python scripts/contact_admin.py show --phone 123456
    python scripts/contact_admin.py show --id 42
    python scripts/contact_admin.py deactivate --id 42 [--execute]
    python scripts/contact_admin.py check-links [--repair]
"""
import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.contact_normalize import normalize_identifiers
from api.services.contact_store import Contact, ContactStore, get_contact_store
from api.services.errors import IdentityError, LinkChainError, NotFoundError
from api.services.identity_resolver import ConsolidatedView, consolidate
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def show_identity(
    store: ContactStore,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    contact_id: Optional[int] = None,
) -> list[ConsolidatedView]:
    """
    Get the consolidated views for an id or an email/phone.

    Read-only: identities that share the email/phone but were never merged
    come back as separate views.
    """
    if contact_id is not None:
        cluster = store.find_cluster(contact_id)
        if not cluster:
            raise NotFoundError(contact_id)
        return [consolidate(cluster)]

    email, phone_number = normalize_identifiers(
        email, phone_number, lowercase_emails=settings.lowercase_emails
    )
    views = []
    seen_primaries = set()
    for match in sorted(store.find_by_exact_match(email, phone_number), key=Contact.sort_key):
        cluster = store.find_cluster(match.id)
        if not cluster:
            continue
        view = consolidate(cluster)
        if view.primary_contact_id not in seen_primaries:
            seen_primaries.add(view.primary_contact_id)
            views.append(view)
    return views


def deactivate_contact(store: ContactStore, contact_id: int, dry_run: bool = True) -> Contact:
    """Soft-remove a contact. Primaries with active secondaries are refused."""
    contact = store.get_by_id(contact_id)
    logger.info(
        f"Contact {contact.id}: {contact.link_precedence.value}, "
        f"email={contact.email}, phone={contact.phone_number}"
    )
    if dry_run:
        logger.info("DRY RUN - no changes made. Use --execute to apply.")
        return contact
    return store.deactivate(contact_id)


def check_links(store: ContactStore, repair: bool = False) -> dict:
    """
    Report secondaries that are not linked directly to an active primary.

    With repair, each one is re-pointed at the primary its chain ends at.
    Dangling links and cycles cannot be repaired automatically.
    """
    stats = {"chained": 0, "repaired": 0, "unrepairable": []}

    with store.transaction():
        for contact in store.find_link_chains():
            stats["chained"] += 1
            try:
                primary_id = store.resolve_primary_id(contact)
            except LinkChainError as e:
                logger.warning(f"Contact {contact.id}: {e.message}")
                stats["unrepairable"].append(contact.id)
                continue

            logger.info(f"Contact {contact.id} links to {contact.linked_id}, primary is {primary_id}")
            if repair:
                store.demote(contact.id, primary_id)
                stats["repaired"] += 1

    logger.info(f"Chained: {stats['chained']}, repaired: {stats['repaired']}, "
                f"unrepairable: {len(stats['unrepairable'])}")
    if stats["chained"] and not repair:
        logger.info("Run with --repair to re-point chained contacts.")
    return stats


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Contact maintenance commands')
    subparsers = parser.add_subparsers(dest='command')

    show_parser = subparsers.add_parser('show', help='Print the identity a contact belongs to')
    show_parser.add_argument('--email', help='Email to look up')
    show_parser.add_argument('--phone', help='Phone number to look up')
    show_parser.add_argument('--id', type=int, help='Contact ID to look up')

    deactivate_parser = subparsers.add_parser('deactivate', help='Soft-remove a contact')
    deactivate_parser.add_argument('--id', type=int, required=True, help='Contact ID')
    deactivate_parser.add_argument('--execute', action='store_true', help='Actually apply changes')

    links_parser = subparsers.add_parser('check-links', help='Audit secondary links')
    links_parser.add_argument('--repair', action='store_true', help='Re-point chained contacts')

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    store = get_contact_store()
    try:
        if args.command == 'show':
            views = show_identity(store, email=args.email, phone_number=args.phone, contact_id=args.id)
            print(json.dumps([v.to_dict() for v in views], indent=2))
        elif args.command == 'deactivate':
            deactivate_contact(store, args.id, dry_run=not args.execute)
        elif args.command == 'check-links':
            stats = check_links(store, repair=args.repair)
            return 1 if stats["unrepairable"] else 0
    except IdentityError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
