#!/usr/bin/env python3
"""
Sync Table Bootstrap Script

Creates the sync tables (with the unique constraints behind each conflict key),
checks that the store answers, and optionally clears one table.

Usage:
    python init_sync_tables.py                          # Create tables and check the connection
    python init_sync_tables.py --check                  # Only check the connection
    python init_sync_tables.py --clear fact_shangzhi    # Clear one table (asks for confirmation)
    python init_sync_tables.py --clear fact_shangzhi --yes
"""

import argparse
import sys

from cloudsync.core.config import settings
from cloudsync.core.logging_config import configure_logging
from cloudsync.db.session import get_engine, get_store_client
from cloudsync.db.tables import TableName, ensure_sync_tables
from cloudsync.domain.sync import service
from cloudsync.domain.sync.errors import SyncError


def print_banner():
    print("\n" + "=" * 80)
    print("CLOUD SYNC TABLE UTILITY")
    print("=" * 80)


def confirm_clear(table: str) -> bool:
    print(f"To confirm clearing '{table}', type its name: ", end="")
    return input().strip() == table


def main():
    parser = argparse.ArgumentParser(
        description="Create, check or clear the cloud sync tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '--check',
        action='store_true',
        help='Only check the connection, do not create tables'
    )
    parser.add_argument(
        '--clear',
        choices=[member.value for member in TableName],
        help='Delete every row of one table'
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Auto-confirm without prompting (for automation)'
    )

    args = parser.parse_args()
    configure_logging(settings.log_level)
    print_banner()

    db_url_display = settings.database_url.split('@')[-1] if '@' in settings.database_url else settings.database_url
    print(f"\nStore: {db_url_display}")

    if not args.check:
        try:
            ensure_sync_tables(get_engine())
        except Exception as e:
            print("\n❌ ERROR: Table bootstrap failed!")
            print(f"   {type(e).__name__}: {e}")
            sys.exit(1)
        print("\n✅ Sync tables are in place")

    client = get_store_client()
    check = service.check_connection(client)
    if not check.ok:
        print(f"\n❌ Connection check failed: {check.message}")
        sys.exit(1)
    print(f"\n✅ {check.message}")

    last_sync = service.get_sync_status(client).get("last_sync")
    print(f"   Last sync: {last_sync or 'never'}")

    if args.clear:
        if not args.yes and not confirm_clear(args.clear):
            print("\n❌ Clear cancelled.")
            sys.exit(0)
        try:
            deleted = service.clear_table(client, args.clear)
        except SyncError as e:
            print(f"\n❌ ERROR: {e.describe()}")
            sys.exit(1)
        print(f"\n🗑  Deleted {deleted} rows from {args.clear}")

    sys.exit(0)


if __name__ == "__main__":
    main()
