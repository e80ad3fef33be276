"""
Schema migrations for the resource store.

Migrations are numbered SQL files (``NNN_description.sql``) applied in
order, each in its own transaction and recorded in ``schema_migrations``.
A session-level advisory lock keeps two controller processes from
migrating the same database at once.
"""

import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Optional, Set

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

# Arbitrary constant shared by every arr-operator process
MIGRATION_LOCK_ID = 7_410_223


class Migration(NamedTuple):
    version: str
    filename: str
    path: Path


def discover_migrations(directory: Optional[Path] = None) -> List[Migration]:
    """
    List migration files in version order.

    Args:
        directory: Where to look; defaults to the bundled migrations

    Raises:
        FileNotFoundError: If the directory does not exist
        ValueError: If two files share a version number
    """
    directory = directory or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    found: List[Migration] = []
    seen: Set[str] = set()
    for entry in sorted(directory.iterdir()):
        match = MIGRATION_PATTERN.match(entry.name)
        if not match or not entry.is_file():
            continue
        version = match.group(1)
        if version in seen:
            raise ValueError(f"Duplicate migration version {version}")
        seen.add(version)
        found.append(Migration(version, entry.name, entry))
    return found


async def _applied_versions(conn: asyncpg.Connection) -> Set[str]:
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """)
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def _apply(conn: asyncpg.Connection, migration: Migration) -> None:
    sql = migration.path.read_text(encoding="utf-8")
    async with conn.transaction():
        await conn.execute(sql)
        await conn.execute(
            "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
            migration.version,
            migration.filename,
        )
    logger.info(f"Applied migration {migration.filename}")


async def run_migrations(pool: asyncpg.Pool, directory: Optional[Path] = None) -> int:
    """
    Apply every pending migration.

    Args:
        pool: Connected asyncpg pool
        directory: Optional override of the migrations directory

    Returns:
        Number of migrations applied

    Raises:
        FileNotFoundError: If the migrations directory is missing
        asyncpg.PostgresError: If a migration fails; it is rolled back and
            later migrations are not attempted
    """
    migrations = discover_migrations(directory)

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        try:
            applied = await _applied_versions(conn)
            pending = [m for m in migrations if m.version not in applied]
            if not pending:
                logger.info("Database schema is up to date")
                return 0

            logger.info(f"Applying {len(pending)} pending migration(s)")
            for migration in pending:
                await _apply(conn, migration)
            return len(pending)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)
