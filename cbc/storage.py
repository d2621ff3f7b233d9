"""
Row-store backends for study workbooks.

A *workbook* is a set of named tables (spreadsheet tabs), each a list of
string rows whose first row is the header.  The service only talks to the
``Store`` protocol, so any backend that can read, append and replace rows
will do:

- ``InMemoryStore``: a dict of tables, used by tests and short-lived demos.
- ``CsvStore``: one CSV file per table under ``<root>/<workbook_id>/``.

``Workbooks`` hands out a store per workbook id (the value a project key
resolves to).
"""

from __future__ import annotations

import csv
import io
import logging
import re
from pathlib import Path
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

Row = list[str]

# Table names used by the study service
ATTRIBUTES = "Attributes"
CONFIG = "Config"
SURVEYS = "Surveys"
DESIGN = "Design"
RESPONSES = "Responses"
DONATE = "Donate"


class Store(Protocol):
    """A single workbook of named tables."""

    def ensure_table(self, name: str) -> None:
        """Create *name* as an empty table if it does not exist yet."""

    def has_table(self, name: str) -> bool:
        ...

    def read_table(self, name: str) -> list[Row]:
        """All rows of *name* (header included); ``[]`` if the table is missing."""

    def write_table(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        """Replace the contents of *name* with *rows*."""

    def append_rows(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        """Append *rows* to *name*, creating the table if needed."""


def _as_row(row: Iterable[object]) -> Row:
    return ["" if cell is None else str(cell) for cell in row]


# ------------------------------------------------------------------
# In-memory backend
# ------------------------------------------------------------------

class InMemoryStore:
    """Tables kept in a plain dict; nothing survives the process."""

    def __init__(self, tables: dict[str, list[Row]] | None = None) -> None:
        self._tables: dict[str, list[Row]] = {
            name: [list(r) for r in rows] for name, rows in (tables or {}).items()
        }

    def ensure_table(self, name: str) -> None:
        self._tables.setdefault(name, [])

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def read_table(self, name: str) -> list[Row]:
        return [list(r) for r in self._tables.get(name, [])]

    def write_table(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        self._tables[name] = [_as_row(r) for r in rows]

    def append_rows(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        self._tables.setdefault(name, []).extend(_as_row(r) for r in rows)

    @property
    def table_names(self) -> list[str]:
        return list(self._tables)


# ------------------------------------------------------------------
# CSV directory backend
# ------------------------------------------------------------------

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def _safe_name(name: str) -> str:
    return _UNSAFE.sub("_", name)


class CsvStore:
    """One CSV file per table inside a workbook directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{_safe_name(name)}.csv"

    def ensure_table(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch()
            logger.info("Created %s table in %s", name, self.directory)

    def has_table(self, name: str) -> bool:
        return self._path(name).exists()

    def read_table(self, name: str) -> list[Row]:
        path = self._path(name)
        if not path.exists():
            return []
        with path.open(newline="", encoding="utf-8") as f:
            return [row for row in csv.reader(f)]

    def write_table(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        buf = io.StringIO()
        csv.writer(buf).writerows(_as_row(r) for r in rows)
        # Replace atomically
        tmp = path.with_suffix(".csv.tmp")
        tmp.write_text(buf.getvalue(), encoding="utf-8")
        tmp.replace(path)

    def append_rows(self, name: str, rows: Iterable[Iterable[object]]) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", newline="", encoding="utf-8") as f:
            csv.writer(f).writerows(_as_row(r) for r in rows)


# ------------------------------------------------------------------
# Workbook registry
# ------------------------------------------------------------------

class Workbooks:
    """Resolve a workbook id to its ``Store``.

    With a *root* directory every workbook is a ``CsvStore`` under it;
    without one, workbooks are in-memory and live as long as this object.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else None
        self._memory: dict[str, InMemoryStore] = {}

    def open(self, workbook_id: str) -> Store:
        if self.root is None:
            return self._memory.setdefault(workbook_id, InMemoryStore())
        return CsvStore(self.root / _safe_name(workbook_id))
