#!/usr/bin/env python3
"""
Remove references to deleted tags or properties from channels.

A tag or property delete that failed midway leaves some channels still
carrying it. This re-runs the cleanup for the given names, or for every
tag/property that channels reference but that no longer exists.

Usage:
    cd channelfinder
    python scripts/reconcile_references.py tag alarm archived
    python scripts/reconcile_references.py property location --verbose
    python scripts/reconcile_references.py tag --dangling --dry-run

Environment variables:
    MONGODB_URL, MONGODB_DATABASE, CF_*_COLLECTION, CF_CASCADE_PAGE_SIZE
    (see channelfinder/config.py)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from channelfinder.config import Settings, configure_logging
from channelfinder.exceptions import ChannelFinderError
from channelfinder.services.channels import ChannelRepository
from channelfinder.services.properties import PropertyRepository
from channelfinder.services.store import MongoDocumentStore
from channelfinder.services.tags import TagRepository

logger = logging.getLogger("reconcile_references")


def find_dangling(kind: str, channels: ChannelRepository, repository) -> list[str]:
    """Names referenced by some channel with no matching tag/property document."""
    referenced: set[str] = set()
    for page in channels.scan({}):
        for channel in page:
            entries = channel.tags if kind == "tag" else channel.properties
            referenced.update(entry.name for entry in entries)

    existing = {entity.name for entity in repository.find_all_by_id(referenced)}
    return sorted(referenced - existing)


def main() -> int:
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Remove stale tag/property references from channels")
    parser.add_argument("kind", choices=["tag", "property"])
    parser.add_argument("names", nargs="*", help="Tag or property names to clean up")
    parser.add_argument(
        "--dangling",
        action="store_true",
        help="Clean up every referenced name that has no tag/property document",
    )
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be cleaned")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--database",
        default=settings.mongodb_database,
        help=f"Database name (default: {settings.mongodb_database})",
    )
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else settings.log_level)

    if not args.names and not args.dangling:
        parser.error("give at least one name or --dangling")

    store = MongoDocumentStore(settings.mongodb_url, args.database)
    store.connect()

    try:
        channels = ChannelRepository(store, settings.channel_collection, settings.query_size)
        if args.kind == "tag":
            repository = TagRepository(store, channels, settings.tag_collection, settings.cascade_page_size)
        else:
            repository = PropertyRepository(
                store, channels, settings.property_collection, settings.cascade_page_size
            )

        names = list(args.names)
        if args.dangling:
            dangling = find_dangling(args.kind, channels, repository)
            logger.info(f"Found {len(dangling)} dangling {args.kind} reference(s): {dangling}")
            names.extend(name for name in dangling if name not in names)

        for name in names:
            if repository.exists_by_id(name):
                logger.warning(f"{args.kind.capitalize()} {name} still exists - skipping")
                continue
            if args.dry_run:
                logger.info(f"Dry run - would remove {args.kind} {name} from channels")
                continue
            rewritten = repository.reconcile(name)
            logger.info(f"{args.kind.capitalize()} {name}: {rewritten} channel(s) rewritten")

    except ChannelFinderError:
        logger.exception(f"Reconciliation of {args.kind}s failed")
        return 1
    finally:
        store.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
