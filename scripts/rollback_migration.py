#!/usr/bin/env python3
"""
Roll back a user's migration. Requires an administrator subject listed in
ADMIN_USER_IDS.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from datamigrate.core.config import DB_PATH
from datamigrate.core.exceptions import AuthorizationError, MigrationNotFoundError, MigrationServiceError
from datamigrate.core.identity import Identity, StaticIdentityProvider
from datamigrate.core.migration import MigrationOrchestrator
from datamigrate.core.rollback import rollback_user_migration
from datamigrate.core.store import SQLiteRecordStore


def main():
    parser = argparse.ArgumentParser(
        description="Delete every record a migration wrote and mark it rolled back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s u1 mig_0123abcd --admin ops-admin     # Roll back one migration
  %(prog)s u1 latest --admin ops-admin           # Roll back the user's latest migration

Environment variables:
- ADMIN_USER_IDS=ops-admin,... (required)
- DB_PATH=./data/target.db
        """
    )

    parser.add_argument("user_id", help="Owner of the migrated data")
    parser.add_argument("migration_id", help="Migration to roll back, or 'latest'")

    parser.add_argument(
        "--admin", "-a",
        required=True,
        help="Administrator subject performing the rollback"
    )

    parser.add_argument(
        "--db-path",
        default=DB_PATH,
        help="Target store path"
    )

    args = parser.parse_args()

    store = SQLiteRecordStore(args.db_path)

    migration_id = args.migration_id
    if migration_id == "latest":
        status = MigrationOrchestrator(store).check_migration_status(args.user_id)
        if status is None:
            print(f"ERROR: No migration recorded for {args.user_id}")
            return 1
        migration_id = status.migration_id

    admin = StaticIdentityProvider(Identity(subject=args.admin)).get_user_identity()

    try:
        result = rollback_user_migration(store, admin, args.user_id, migration_id)
    except AuthorizationError as e:
        print(f"ERROR: {e}")
        print("Set ADMIN_USER_IDS to include the --admin subject.")
        return 1
    except MigrationNotFoundError as e:
        print(f"ERROR: {e}")
        return 1
    except MigrationServiceError as e:
        print(f"ERROR: Rollback failed: {e}")
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
