"""
Forward-only schema migrations for the state store.

Each module named {version}_{name}.py in this package defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None

Applied versions are kept in the `migrations` table. A database that has
versions this build does not ship is refused rather than written to.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ...errors import SchemaTooNewError

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Migrations shipped with this package, ordered by version."""
    found = []
    for path in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        found.append(Migration(module.VERSION, module.NAME, module.upgrade))
    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Brings one SQLite connection up to the newest schema."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def get_current_version(self) -> int:
        return max(self.get_applied_versions(), default=0)

    def run_pending(self) -> list[int]:
        """
        Apply every shipped migration not yet recorded, oldest first.

        Each migration commits together with its bookkeeping row, so a
        failure leaves the database at the previous version.

        Returns:
            Versions applied by this call

        Raises:
            SchemaTooNewError: Database was migrated by a newer release
        """
        shipped = get_all_migrations()
        applied = self.get_applied_versions()

        unknown = sorted(applied - {m.version for m in shipped})
        if unknown:
            raise SchemaTooNewError(unknown)

        done = []
        for migration in shipped:
            if migration.version in applied:
                continue
            logger.info(f"Applying migration {migration.version}: {migration.name}")
            try:
                migration.upgrade(self.conn)
                self.conn.execute(
                    "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (
                        migration.version,
                        migration.name,
                        datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                    ),
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                logger.error(f"Migration {migration.version} ({migration.name}) failed")
                raise
            done.append(migration.version)

        if done:
            logger.info(f"Schema now at version {done[-1]}")
        return done
