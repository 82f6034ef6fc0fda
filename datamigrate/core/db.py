"""
SQLite connection handling shared by the target and legacy stores.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from .config import DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with the document table."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # One row per record; the document itself is JSON
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_kind ON records(kind, created_at)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'records' in table_names
    except sqlite3.Error:
        return False
