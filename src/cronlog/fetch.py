"""
Data fetchers: where the records of an hour window come from.

The processor only depends on the DataFetcher protocol. Two concrete
fetchers are provided for common setups; anything else can be plugged in via
``load_fetcher("package.module:attribute")``.
"""

import importlib
import logging
import re
import sqlite3
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cronlog.core.errors import ConfigurationError, FetchError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@runtime_checkable
class DataFetcher(Protocol):
    """Returns all records whose timestamp falls in [hour_start, hour_end)."""

    def fetch(self, job_date: date, hour_start: datetime, hour_end: datetime) -> Sequence[Record]: ...


class CallableFetcher:
    """Adapts a plain function ``fn(job_date, hour_start, hour_end)`` to DataFetcher."""

    def __init__(self, fn: Callable[[date, datetime, datetime], Sequence[Record]]):
        self.fn = fn

    def fetch(self, job_date: date, hour_start: datetime, hour_end: datetime) -> Sequence[Record]:
        return list(self.fn(job_date, hour_start, hour_end))


class SQLiteTableFetcher:
    """
    Reads an hour window from a table in a SQLite database.

    Timestamps are compared as ISO-8601 UTC strings, which is how the window
    bounds are rendered; the column must use the same representation.
    """

    def __init__(self, db_path: Path | str, table: str, timestamp_column: str = "timestamp"):
        for name in (table, timestamp_column):
            if not _IDENTIFIER_RE.match(name):
                raise ConfigurationError(f"Invalid SQL identifier: {name!r}")
        self.db_path = Path(db_path)
        self.table = table
        self.timestamp_column = timestamp_column

    def fetch(self, job_date: date, hour_start: datetime, hour_end: datetime) -> Sequence[Record]:
        start = hour_start.astimezone(timezone.utc).isoformat()
        end = hour_end.astimezone(timezone.utc).isoformat()

        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise FetchError(f"Cannot open source database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM {self.table}
                WHERE {self.timestamp_column} >= ? AND {self.timestamp_column} < ?
                ORDER BY {self.timestamp_column}
                """,
                (start, end),
            ).fetchall()
        except sqlite3.Error as e:
            raise FetchError(f"Query on {self.table} failed: {e}") from e
        finally:
            conn.close()

        logger.debug(f"Fetched {len(rows)} rows from {self.table} for [{start}, {end})")
        return [dict(row) for row in rows]


def load_fetcher(path: str) -> DataFetcher:
    """
    Import a fetcher from a "module:attribute" string.

    The attribute may be a DataFetcher instance, a class producing one when
    called without arguments, or a plain function wrapped in CallableFetcher.

    Raises:
        ConfigurationError: If the target cannot be imported or is unusable
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"fetcher must look like 'module:attribute', got {path!r}")

    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load fetcher {path!r}: {e}") from e

    if isinstance(target, type):
        target = target()
    if isinstance(target, DataFetcher):
        return target
    if callable(target):
        return CallableFetcher(target)
    raise ConfigurationError(f"fetcher {path!r} is neither a DataFetcher nor callable")
