# mailbridge/core/storage/paths.py
from __future__ import annotations
from pathlib import Path
import os

# One database per component
# mailbridge: idempotency records and session handles
ALLOWED_COMPONENTS = {"mailbridge"}


def mailbridge_home() -> Path:
    """~/.mailbridge, overridable with MAILBRIDGE_HOME"""
    override = os.environ.get("MAILBRIDGE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mailbridge"


def store_root() -> Path:
    """Root directory for component databases"""
    return mailbridge_home() / "store"


def component_db_dir(component: str) -> Path:
    """Database directory for a component"""
    if component not in ALLOWED_COMPONENTS:
        raise ValueError(f"Unknown component: {component}. Allowed: {ALLOWED_COMPONENTS}")
    return store_root() / component


def component_db_path(component: str) -> Path:
    """Database file path for a component"""
    return component_db_dir(component) / "db.sqlite"


def ensure_db_exists(component: str, db_path: Path | None = None) -> Path:
    """Make sure the database directory exists and the file is in WAL mode"""
    import sqlite3

    p = Path(db_path) if db_path is not None else component_db_path(component)
    p.parent.mkdir(parents=True, exist_ok=True)

    if not p.exists():
        conn = sqlite3.connect(str(p))
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA busy_timeout=30000;")
            conn.commit()
        finally:
            conn.close()

    return p


def default_workspaces_dir() -> Path:
    """Root directory holding one workspace folder per sender"""
    return mailbridge_home() / "groups"
