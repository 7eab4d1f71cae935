"""
SQLite store setup for rxgate.

The store is a single SQLite file named by RXGATE_DB_PATH (default
/tmp/rxgate.db). Alembic owns the schema; ensure_schema() upgrades that same
file to head, then switches it to WAL and restricts it to its owner. Every
connection the pipeline opens goes through get_connection(), so migrations
and requests can never point at different databases.
"""

import sqlite3
import os
import stat
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[3]


def get_db_path() -> Path:
    return Path(os.getenv("RXGATE_DB_PATH", "/tmp/rxgate.db"))


def sqlite_url(db_path: Path) -> str:
    """SQLAlchemy URL Alembic uses for the store file."""
    return f"sqlite:///{db_path}"


def restrict_permissions(db_path: Path):
    """
    Make the store file owner read/write only (0600).

    Raises:
        PermissionError: If the mode cannot be changed
    """
    if not db_path.exists():
        return

    try:
        os.chmod(db_path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError as e:
        raise PermissionError(f"Cannot restrict permissions on {db_path}: {e}")


def ensure_schema():
    """Upgrade the store to the latest Alembic revision. Idempotent."""
    from alembic import command as alembic_command
    from alembic.config import Config

    db_path = get_db_path()

    alembic_cfg = Config(str(REPO_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(REPO_ROOT / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    alembic_command.upgrade(alembic_cfg, "head")

    conn = sqlite3.connect(db_path)
    try:
        # Readers must not block the audit writer
        conn.execute("PRAGMA journal_mode=WAL")
    finally:
        conn.close()
    restrict_permissions(db_path)


def get_connection() -> sqlite3.Connection:
    """Open the store in autocommit mode; callers BEGIN explicitly."""
    conn = sqlite3.connect(get_db_path(), timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def check_db_security() -> dict:
    """Report whether the store exists, is private to its owner, and uses WAL."""
    db_path = get_db_path()

    results = {
        "db_exists": db_path.exists(),
        "permissions_secure": False,
        "wal_enabled": False,
    }
    if not db_path.exists():
        return results

    mode = stat.S_IMODE(os.stat(db_path).st_mode)
    results["permissions_secure"] = (mode & (stat.S_IRGRP | stat.S_IROTH)) == 0

    conn = get_connection()
    try:
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    finally:
        conn.close()
    results["wal_enabled"] = journal_mode.upper() == "WAL"
    return results
