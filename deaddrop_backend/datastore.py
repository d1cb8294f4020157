"""Directory-backed databases, tables and records.

Layout under the storage root::

    catalog.json                 {"databases": [...]}
    <db>/tables.json             {"tables": [...]}
    <db>/<table>/config.json     {"columns": []}
    <db>/<table>/<ms>-<seq>.json one record each

A record name is the 13-digit millisecond timestamp plus a 6-digit sequence
number that restarts at 0 for each new millisecond. Names only ever grow, so
lexical order is insertion order even when the clock stalls or steps back.

Listings are only updated once the directory they point at and its seed
record are on disk, so a crash can leave an orphan directory but never a
listed name without one.
"""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any, Callable

from .config import (
    CATALOG_FILENAME,
    MAX_ID_ATTEMPTS,
    RECORD_SUFFIX,
    TABLE_CONFIG_FILENAME,
    TABLE_LIST_FILENAME,
)
from .errors import AlreadyExists, CatalogUnreadable, NotFound, StorageUnavailable
from .jsonio import create_json_exclusive, read_json, write_json_atomic
from .locks import PathLocks
from .security import normalize_name


logger = logging.getLogger(__name__)

_RECORD_RE = re.compile(r"^(\d{13})-(\d{6})\.json$")
MAX_SEQ = 999_999


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _read_name_list(path: Path, key: str) -> list[str]:
    """Read {key: [str, ...]} from path. Raises FileNotFoundError or ValueError."""
    data = read_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected an object")
    names = data.get(key)
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise ValueError(f"{path.name}: {key!r} must be a list of names")
    return names


class CatalogStore:
    """The catalog of database names and the database directories themselves."""

    def __init__(self, root: Path, locks: PathLocks | None = None) -> None:
        self.root = root
        self._locks = locks or PathLocks()

    @property
    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILENAME

    def ensure(self) -> None:
        """Create the storage root and an empty catalog if neither exists."""
        self.root.mkdir(parents=True, exist_ok=True)
        with self._locks.hold(self.root):
            if not self.catalog_path.exists():
                write_json_atomic(self.catalog_path, {"databases": []})
                logger.info("Initialised empty catalog")

    def _load(self) -> list[str]:
        try:
            return _read_name_list(self.catalog_path, "databases")
        except FileNotFoundError as exc:
            raise CatalogUnreadable("Catalog missing") from exc
        except (OSError, ValueError) as exc:
            raise CatalogUnreadable() from exc

    def list_databases(self) -> list[str]:
        return self._load()

    def create_database(self, name: str) -> None:
        name = normalize_name(name, "database name")
        with self._locks.hold(self.root):
            names = self._load()
            if name in names:
                raise AlreadyExists(f"Database {name} already exists")

            db_dir = self.root / name
            try:
                # A directory left by an interrupted create is adopted along
                # with its table list, if that list is readable.
                db_dir.mkdir(exist_ok=True)
                table_list = db_dir / TABLE_LIST_FILENAME
                try:
                    _read_name_list(table_list, "tables")
                except (FileNotFoundError, ValueError):
                    write_json_atomic(table_list, {"tables": []})
                write_json_atomic(self.catalog_path, {"databases": names + [name]})
            except OSError as exc:
                logger.exception("Failed to create database %s", name)
                raise StorageUnavailable() from exc

        logger.info("Created database %s", name)


class TableStore:
    """Per-database table lists and table directories.

    A database exists only if the catalog lists it; an unlisted directory
    left by an interrupted create is invisible here.
    """

    def __init__(self, catalog: CatalogStore, locks: PathLocks | None = None) -> None:
        self.catalog = catalog
        self.root = catalog.root
        self._locks = locks or PathLocks()

    def _db_dir(self, db_name: str) -> Path:
        db_name = normalize_name(db_name, "database name")
        if db_name not in self.catalog.list_databases():
            raise NotFound(f"Database {db_name} not found")
        return self.root / db_name

    def _load(self, db_dir: Path) -> list[str]:
        try:
            return _read_name_list(db_dir / TABLE_LIST_FILENAME, "tables")
        except FileNotFoundError as exc:
            raise NotFound(f"Database {db_dir.name} not found") from exc
        except (OSError, ValueError) as exc:
            raise StorageUnavailable() from exc

    def list_tables(self, db_name: str) -> list[str]:
        return self._load(self._db_dir(db_name))

    def create_table(self, db_name: str, table_name: str) -> None:
        db_dir = self._db_dir(db_name)
        table_name = normalize_name(table_name, "table name")
        with self._locks.hold(db_dir):
            tables = self._load(db_dir)
            if table_name in tables:
                raise AlreadyExists(f"Table {table_name} already exists")

            table_dir = db_dir / table_name
            try:
                table_dir.mkdir(exist_ok=True)
                write_json_atomic(table_dir / TABLE_CONFIG_FILENAME, {"columns": []})
                write_json_atomic(db_dir / TABLE_LIST_FILENAME, {"tables": tables + [table_name]})
            except OSError as exc:
                logger.exception("Failed to create table %s/%s", db_dir.name, table_name)
                raise StorageUnavailable() from exc

        logger.info("Created table %s/%s", db_dir.name, table_name)

    def table_dir(self, db_name: str, table_name: str) -> Path:
        """Return the directory of an existing table, or raise NotFound."""
        db_dir = self._db_dir(db_name)
        table_name = normalize_name(table_name, "table name")
        if table_name not in self._load(db_dir):
            raise NotFound(f"Table {table_name} not found")
        table_dir = db_dir / table_name
        if not (table_dir / TABLE_CONFIG_FILENAME).is_file():
            raise NotFound(f"Table {table_name} not found")
        return table_dir


class RecordStore:
    """Timestamp-named JSON records inside a table directory."""

    def __init__(
        self,
        tables: TableStore,
        locks: PathLocks | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.tables = tables
        self._locks = locks or PathLocks()
        self._clock = clock

    def _record_names(self, table_dir: Path) -> list[str]:
        return sorted(p.name for p in table_dir.iterdir() if _RECORD_RE.match(p.name))

    def _next_name(self, table_dir: Path) -> str:
        """Return a record name sorting after every existing one.

        Must be called with the table lock held.
        """
        ms = self._clock()
        seq = 0
        names = self._record_names(table_dir)
        if names:
            match = _RECORD_RE.match(names[-1])
            last_ms, last_seq = int(match.group(1)), int(match.group(2))
            if ms <= last_ms:
                ms, seq = last_ms, last_seq + 1
                if seq > MAX_SEQ:
                    ms, seq = last_ms + 1, 0
        return f"{ms:013d}-{seq:06d}{RECORD_SUFFIX}"

    def insert(self, db_name: str, table_name: str, data: Any) -> str:
        """Append data as a new record and return the record's filename."""
        table_dir = self.tables.table_dir(db_name, table_name)
        with self._locks.hold(table_dir):
            for _ in range(MAX_ID_ATTEMPTS):
                try:
                    name = self._next_name(table_dir)
                except OSError as exc:
                    raise StorageUnavailable() from exc
                try:
                    create_json_exclusive(table_dir / name, data)
                except FileExistsError:
                    continue
                except OSError as exc:
                    logger.exception("Failed to insert into %s/%s", db_name, table_name)
                    raise StorageUnavailable() from exc
                logger.info("Inserted %s into %s/%s", name, db_name, table_name)
                return name

        raise StorageUnavailable(f"No free record name after {MAX_ID_ATTEMPTS} attempts")

    def view(self, db_name: str, table_name: str) -> list[Any]:
        """Return every record in the table, oldest first."""
        table_dir = self.tables.table_dir(db_name, table_name)
        records = []
        try:
            for name in self._record_names(table_dir):
                records.append(read_json(table_dir / name))
        except (OSError, ValueError) as exc:
            logger.exception("Failed to read %s/%s", db_name, table_name)
            raise StorageUnavailable() from exc
        return records
