#!/usr/bin/env python3
"""
Backup tool — export the membership data to JSON or restore it.

Usage:
    # Write a snapshot to a file (stdout if omitted):
    python scripts/backup.py export -o backup.json

    # Validate a snapshot and show what it contains:
    python scripts/backup.py restore backup.json

    # Replace all stored data with the snapshot:
    python scripts/backup.py restore backup.json --replace
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def export_backup(output: str = None) -> int:
    from backup.codec import create_backup, mark_backup_completed
    from database.store_factory import create_store

    store = create_store()
    try:
        doc = await create_backup(store)
        if output:
            with open(output, "w") as f:
                f.write(doc)
            settings = await mark_backup_completed(store)
            print(f"Backup written to {output}")
            if settings.next_backup:
                print(f"Next backup due: {settings.next_backup.isoformat()}")
        else:
            print(doc)
    finally:
        await store.close()
    return 0


async def restore(path: str, replace: bool = False) -> int:
    from backup.codec import restore_backup
    from database.errors import StoreError
    from database.store_factory import create_store

    with open(path) as f:
        doc = f.read()

    store = create_store()
    try:
        report = await restore_backup(store, doc, replace=replace)
    except StoreError as e:
        print(f"Restore failed ({e.operation}): {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()

    print(f"Snapshot taken: {report.timestamp.isoformat()}")
    print(f"Members: {report.members}  Reminders: {report.reminders}  Payments: {report.payments}")
    print("Data replaced. ✓" if report.applied else "Validated only; pass --replace to apply.")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Membership data backup")
    sub = parser.add_subparsers(dest="command", required=True)

    export_cmd = sub.add_parser("export", help="Write a JSON snapshot")
    export_cmd.add_argument("-o", "--output", help="Output file (default: stdout)")

    restore_cmd = sub.add_parser("restore", help="Validate or apply a JSON snapshot")
    restore_cmd.add_argument("path", help="Snapshot file")
    restore_cmd.add_argument("--replace", action="store_true", help="Replace all stored data")

    args = parser.parse_args()
    if args.command == "export":
        code = asyncio.run(export_backup(args.output))
    else:
        code = asyncio.run(restore(args.path, replace=args.replace))
    sys.exit(code)


if __name__ == "__main__":
    main()
