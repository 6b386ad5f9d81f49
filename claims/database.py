"""SQLite access shared by the claim stores."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence

from claims.config import DATA_DIR, DB_NAME, DB_TIMEOUT_SECONDS
from domain.errors import TransientStorageError

logger = logging.getLogger(__name__)

# SQLite's default host parameter limit is 999
IN_CHUNK = 500


def chunked(items: Sequence[str], size: int = IN_CHUNK) -> Iterator[List[str]]:
    """Split ``items`` into lists small enough for one ``IN (...)`` query."""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


class Database:
    """
    One SQLite file holding points, claims and their satellite tables.

    Connections are opened per operation. Readers run in autocommit mode;
    writers use ``transaction()`` which takes the write lock up front
    (``BEGIN IMMEDIATE``) so constraint checks see committed state.
    """

    def __init__(self, data_dir: str = DATA_DIR, db_name: str = DB_NAME,
                 timeout: float = DB_TIMEOUT_SECONDS):
        """
        Initialize database location.

        Args:
            data_dir: Directory holding the database file
            db_name: SQLite database filename
            timeout: Seconds to wait on a locked database before giving up
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.timeout = timeout

        self.data_dir.mkdir(parents=True, exist_ok=True)

        # Serializes schema creation between stores sharing this file
        self._schema_lock = threading.Lock()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection; storage failures surface as TransientStorageError."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.OperationalError as e:
            logger.error("Cannot open %s: %s", self.db_path, e)
            raise TransientStorageError(f"Cannot open database: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.OperationalError as e:
            logger.error("Storage error on %s: %s", self.db_path, e)
            raise TransientStorageError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; commits on success, rolls back on any error."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def create_schema(self, statements):
        """Run idempotent DDL statements."""
        with self._schema_lock:
            with self.connect() as conn:
                for statement in statements:
                    conn.execute(statement)
