"""
Shared SQL helpers for the category, allergen, product and run repositories.

Repositories wrap a caller-owned connection, keep their SQL explicit and
return pydantic rows.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    table: str = ""  # Override in subclass; used by ``count()``

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement with ``?`` or ``:name`` placeholders."""
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(
        self,
        sql: str,
        params_list: list[tuple[Any, ...] | dict[str, Any]],
    ) -> sqlite3.Cursor:
        """Execute a SQL statement once per element of ``params_list``."""
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    def iterate(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Iterator[sqlite3.Row]:
        """Execute a query and yield rows one at a time from the cursor."""
        cursor = self.execute(sql, params)
        try:
            yield from cursor
        finally:
            cursor.close()

    def count(self) -> int:
        """Return the number of rows in ``self.table``."""
        row = self.fetchone(f"SELECT COUNT(*) AS n FROM {self.table};")
        assert row is not None
        return int(row["n"])
