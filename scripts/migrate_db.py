#!/usr/bin/env python3
"""
Database Migration — Create missing tables and seed defaults.

Runs the same initialization sequence the store performs lazily:
bridge wait, connection open, per-table create-if-absent, seeding of
the default user and backup settings.

Usage:
    # Local:
    python scripts/migrate_db.py

    # Against another database:
    GYM_CONFIG=/etc/gym/settings.yaml python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def check_tables(url: str) -> list[str]:
    """Print defined vs existing tables; return the missing ones."""
    from sqlalchemy import text

    from database.models import Base
    from database.session import DatabaseHandle

    handle = DatabaseHandle(url)
    await handle.connect()
    try:
        dialect = handle.dialect
        print(f"Database: {dialect}")
        print(f"URL: {url.split('@')[-1] if '@' in url else url}")
        print(f"Tables defined: {', '.join(Base.metadata.tables.keys())}")

        async with handle.engine.connect() as conn:
            # Database-specific table listing
            if dialect == "postgresql":
                result = await conn.execute(text(
                    "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
                ))
            elif dialect == "mysql":
                result = await conn.execute(text("SHOW TABLES"))
            else:  # sqlite
                result = await conn.execute(text(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
                ))
            existing = [row[0] for row in result.fetchall()]
    finally:
        await handle.dispose()

    print(f"Tables existing: {', '.join(existing) or '(none)'}")
    missing = sorted(set(Base.metadata.tables.keys()) - set(existing))
    if missing:
        print(f"Tables MISSING: {', '.join(missing)}")
        print("Run without --check to create them.")
    else:
        print("All tables exist. ✓")
    return missing


async def run_migration(check_only: bool = False) -> int:
    from config.settings import load_settings
    settings = load_settings()

    if check_only:
        missing = await check_tables(settings.database.url)
        return 1 if missing else 0

    from dataclasses import replace
    from database.selector import BackendSelector

    # Migration is meaningless for the in-memory backend
    selector = BackendSelector(replace(settings.database, store_backend="sql"), debug=settings.debug)
    print("Running database migration...")
    try:
        await selector.initialize()
        stats = await selector.stats()
    finally:
        await selector.close()

    print(f"Database: {await selector.get_database_path()}")
    print("Rows: " + ", ".join(f"{name}={count}" for name, count in stats.items()))
    print("Migration complete. ✓")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_migration(check_only=args.check)))


if __name__ == "__main__":
    main()
