"""
Migration 002: Index transfer pair lookups.
"""

import sqlite3

VERSION = 2
NAME = "pair_id_index"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_transactions_pair ON transactions(user_id, pair_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    conn.execute("DROP INDEX IF EXISTS idx_transactions_pair")
