#!/usr/bin/env python3
"""
Migrate one user's legacy data into the target store.

The bundle is read from a JSON file (or assembled from the legacy store with
--from-legacy); its checksum is computed unless one is supplied.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from datamigrate.core.checksum import checksum
from datamigrate.core.config import DB_PATH, LEGACY_DB_PATH
from datamigrate.core.exceptions import MigrationServiceError
from datamigrate.core.identity import Identity, StaticIdentityProvider
from datamigrate.core.migration import MigrationOrchestrator
from datamigrate.core.store import LegacyStore, SQLiteRecordStore
from datamigrate.core.verification import verify_import_integrity


def main():
    parser = argparse.ArgumentParser(
        description="Migrate a user's legacy settings, profile and projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s bundle.json --user-id u1              # Migrate a bundle file
  %(prog)s bundle.json --user-id u1 --verify     # Migrate, then check project files
  %(prog)s --from-legacy --user-id u1            # Build the bundle from the legacy store

Environment variables:
- DB_PATH=./data/target.db
- LEGACY_DB_PATH=./data/legacy.db
- CHECKSUM_STRATEGY=rolling|sha256
        """
    )

    parser.add_argument(
        "bundle_path",
        nargs="?",
        help="JSON file holding {settings, profile, projects}"
    )

    parser.add_argument(
        "--user-id", "-u",
        required=True,
        help="Owner of the data; the migration runs as this user"
    )

    parser.add_argument(
        "--checksum", "-c",
        help="Expected bundle checksum (default: computed from the bundle)"
    )

    parser.add_argument(
        "--from-legacy",
        action="store_true",
        help="Assemble the bundle from the legacy store instead of a file"
    )

    parser.add_argument(
        "--db-path",
        default=DB_PATH,
        help="Target store path"
    )

    parser.add_argument(
        "--legacy-db-path",
        default=LEGACY_DB_PATH,
        help="Legacy store path (with --from-legacy)"
    )

    parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify project file integrity after migrating"
    )

    args = parser.parse_args()

    if args.from_legacy == bool(args.bundle_path):
        parser.error("Give either a bundle path or --from-legacy")

    try:
        if args.from_legacy:
            legacy = LegacyStore(SQLiteRecordStore(args.legacy_db_path))
            bundle = legacy.build_bundle(args.user_id)
        else:
            with open(args.bundle_path, "r", encoding="utf-8") as f:
                bundle = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"ERROR: Could not read bundle: {e}")
        return 1

    expected = args.checksum or checksum(bundle)
    store = SQLiteRecordStore(args.db_path)
    identity = StaticIdentityProvider(Identity(subject=args.user_id)).get_user_identity()

    try:
        result = MigrationOrchestrator(store).migrate_user_data(identity, args.user_id, bundle, expected)
    except MigrationServiceError as e:
        print(f"ERROR: Migration rejected: {e}")
        return 1

    output = result.to_dict()
    if args.verify:
        output["integrity"] = verify_import_integrity(store, args.user_id)

    print(json.dumps(output, indent=2))
    return 0 if result.success else 2


if __name__ == "__main__":
    sys.exit(main())
