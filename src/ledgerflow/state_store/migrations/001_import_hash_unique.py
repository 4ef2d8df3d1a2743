"""
Migration 001: Enforce one import record per (user, source, hash).

Closes the race between the duplicate check and the insert of two
concurrent imports. Rows that already collide are reduced to the oldest.
"""

import sqlite3

VERSION = 1
NAME = "import_hash_unique"


def upgrade(conn: sqlite3.Connection) -> None:
    """Drop colliding history rows and add the unique index."""
    conn.execute(
        """
        DELETE FROM imported_transactions
        WHERE id NOT IN (
            SELECT MIN(id) FROM imported_transactions
            GROUP BY user_id, source, hash
        )
    """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_imported_unique_hash
        ON imported_transactions(user_id, source, hash)
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove the unique index."""
    conn.execute("DROP INDEX IF EXISTS idx_imported_unique_hash")
