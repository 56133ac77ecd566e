"""Database utilities for the RBI registry.

Provides reusable functions for:
- Batch inserts (PSGC reference loads)
- Row counts for the builder summary
- Transaction scoping for multi-statement writes
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List

logger = logging.getLogger(__name__)


def batch_insert(conn: sqlite3.Connection, query: str, rows: List[tuple],
                 batch_size: int = 1000) -> int:
    """Execute ``executemany`` in batches, committing after each batch.

    Example:
        rows = [("0100000000", "Region I (Ilocos Region)"), ...]
        batch_insert(conn, "INSERT OR REPLACE INTO psgc_regions VALUES (?, ?)", rows)

    Returns:
        Total number of rows written.
    """
    total = 0
    for i in range(0, len(rows), batch_size):
        batch = rows[i:i + batch_size]
        conn.executemany(query, batch)
        conn.commit()
        total += len(batch)
    return total


def get_table_count(conn: sqlite3.Connection, table: str) -> int:
    result = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
    return result[0] if result else 0


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Commit the enclosed statements together, or roll all of them back.

    Usage::

        with transaction(conn):
            conn.execute("INSERT INTO households ...")
            conn.execute("INSERT INTO residents ...")

    Any exception rolls back and is re-raised.
    """
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        logger.debug("Transaction rolled back")
        raise
    else:
        conn.commit()
