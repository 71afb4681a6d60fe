"""SQLite schema definition for the action graph store."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

# Nodes live in one table per label; edges live in `relationships`.
# The partial unique indexes enforce one performer and one backend per action.
SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS backends (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS actions (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    parameters TEXT NOT NULL,
    result TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('success', 'failure')),
    timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS relationships (
    start_id TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('PERFORMED', 'USED')),
    end_id TEXT NOT NULL,
    PRIMARY KEY (start_id, type, end_id)
);

CREATE INDEX IF NOT EXISTS idx_actions_timestamp ON actions(timestamp);
CREATE INDEX IF NOT EXISTS idx_actions_type ON actions(type);
CREATE INDEX IF NOT EXISTS idx_backends_type ON backends(type);
CREATE INDEX IF NOT EXISTS idx_relationships_end ON relationships(end_id, type);
CREATE UNIQUE INDEX IF NOT EXISTS idx_one_performer
    ON relationships(end_id) WHERE type = 'PERFORMED';
CREATE UNIQUE INDEX IF NOT EXISTS idx_one_backend
    ON relationships(start_id) WHERE type = 'USED';
"""

# Run one statement per execute() call; trigger bodies hold semicolons.
TRIGGER_STATEMENTS: list[str] = [
    # The log is append-only: reject any rewrite of history.
    """CREATE TRIGGER IF NOT EXISTS actions_no_update BEFORE UPDATE ON actions BEGIN
        SELECT RAISE(ABORT, 'actions are append-only');
    END""",
    """CREATE TRIGGER IF NOT EXISTS actions_no_delete BEFORE DELETE ON actions BEGIN
        SELECT RAISE(ABORT, 'actions are append-only');
    END""",
    """CREATE TRIGGER IF NOT EXISTS users_no_update BEFORE UPDATE ON users BEGIN
        SELECT RAISE(ABORT, 'users are immutable');
    END""",
    """CREATE TRIGGER IF NOT EXISTS backends_no_update BEFORE UPDATE ON backends BEGIN
        SELECT RAISE(ABORT, 'backends are immutable');
    END""",
]

FTS_SETUP_STATEMENTS: list[str] = [
    # External-content FTS5 table over the text-bearing action fields.
    """CREATE VIRTUAL TABLE IF NOT EXISTS actions_fts USING fts5(
        name,
        type,
        parameters,
        content='actions',
        content_rowid='rowid',
        tokenize='porter unicode61 remove_diacritics 0'
    )""",
    # Insert-only sync: actions are never updated or deleted.
    """CREATE TRIGGER IF NOT EXISTS actions_ai AFTER INSERT ON actions BEGIN
        INSERT INTO actions_fts(rowid, name, type, parameters)
        VALUES (new.rowid, new.name, new.type, new.parameters);
    END""",
]


async def ensure_fts_tables(conn: aiosqlite.Connection) -> bool:
    """Create the FTS5 table and its sync trigger if they don't exist.

    Returns False if FTS5 is not compiled into the SQLite build
    (rare, but possible on some minimal distributions).
    """
    try:
        for sql in FTS_SETUP_STATEMENTS:
            await conn.execute(sql)
    except sqlite3.OperationalError:
        logger.warning("FTS5 unavailable; context recommendations will be empty", exc_info=True)
        return False
    return True


async def apply_schema(conn: aiosqlite.Connection) -> bool:
    """Create tables, indexes and triggers, then stamp the schema version.

    Every statement is IF NOT EXISTS, so concurrent or repeated calls are
    no-ops once the schema is in place.

    Returns:
        Whether full-text search is available.
    """
    await conn.executescript(SCHEMA)
    for sql in TRIGGER_STATEMENTS:
        await conn.execute(sql)
    has_fts = await ensure_fts_tables(conn)

    async with conn.execute("SELECT version FROM schema_version") as cursor:
        row = await cursor.fetchone()
    if row is None:
        await conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
    elif row[0] > SCHEMA_VERSION:
        logger.warning(
            "Database schema version %d is newer than supported version %d",
            row[0],
            SCHEMA_VERSION,
        )
    await conn.commit()
    return has_fts
