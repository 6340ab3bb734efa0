"""
Stock Snapshot Parser - spreadsheet grid → normalized stock records.

The warehouse system exports a full stock count as a sheet laid out as:

    col 0  yarn name, blank (same yarn as the row above), or a section
           marker such as ``BU/Main Store`` that sets the location for
           the rows below it
    col 1  lot / batch number
    col 2  quantity in kg
    col 3  explicit location (optional, overrides the section)

The first two rows are a title/header band. Every row yields exactly one
``RowOutcome`` so callers can see why a row did not become a record.
"""

from __future__ import annotations

import csv
import io
import math
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Any, Union

import pandas as pd
import structlog

from reconciliation.errors import SnapshotFormatError
from reconciliation.policy import DEFAULT_POLICY, ReconciliationPolicy

logger = structlog.get_logger()

Grid = Sequence[Sequence[Any]]

_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_CSV_SUFFIXES = {".csv", ".txt"}
# .xls is the legacy BIFF format that openpyxl cannot open
_EXCEL_ENGINES = {".xls": "xlrd", ".xlsx": "openpyxl", ".xlsm": "openpyxl"}


# ── Row outcomes ───────────────────────────────────────────────────────────


class SkipReason(str, Enum):
    BLANK_ROW = "blank_row"
    MISSING_LOT_NUMBER = "missing_lot_number"
    INVALID_QUANTITY = "invalid_quantity"
    NEGATIVE_QUANTITY = "negative_quantity"
    MISSING_YARN_NAME = "missing_yarn_name"


def normalize_key_part(value: str | None) -> str:
    return (value or "").strip().casefold()


@dataclass(frozen=True)
class StockRecord:
    """One counted lot from the snapshot. Lives only for one pass."""

    yarn_name: str
    lot_number: str
    quantity: float
    location: str
    source_row: int = 0

    @property
    def identity_key(self) -> tuple[str, str, str]:
        return (
            normalize_key_part(self.yarn_name),
            normalize_key_part(self.lot_number),
            normalize_key_part(self.location),
        )

    @property
    def lot_key(self) -> tuple[str, str]:
        return (normalize_key_part(self.yarn_name), normalize_key_part(self.lot_number))


@dataclass(frozen=True)
class ParsedRow:
    row_index: int
    record: StockRecord


@dataclass(frozen=True)
class SectionMarker:
    row_index: int
    location: str


@dataclass(frozen=True)
class SkippedRow:
    row_index: int
    reason: SkipReason


RowOutcome = Union[ParsedRow, SectionMarker, SkippedRow]


# ── Cell coercion ──────────────────────────────────────────────────────────


def cell_text(value: Any) -> str:
    """Render a cell as trimmed text; empty and NaN cells become ``""``."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        # Excel stores numeric lot numbers as floats
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def parse_quantity(value: Any) -> float | None:
    """Parse a quantity cell permissively; ``None`` when no number is present."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        match = _LEADING_NUMBER_RE.match(text)
        if not match:
            return None
        number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if index < len(row) else None


# ── Grid parsing ───────────────────────────────────────────────────────────


def iter_row_outcomes(grid: Grid, policy: ReconciliationPolicy = DEFAULT_POLICY) -> Iterator[RowOutcome]:
    """Classify every data row of the grid, in order."""
    section_location = ""
    last_yarn_name = ""

    for row_index in range(policy.header_rows, len(grid)):
        row = grid[row_index] or ()
        if all(cell_text(cell) == "" for cell in row):
            yield SkippedRow(row_index, SkipReason.BLANK_ROW)
            continue

        first_col = cell_text(_cell(row, 0))
        if first_col.startswith(policy.section_marker_prefix):
            section_location = first_col
            # names never carry across sections
            last_yarn_name = ""
            yield SectionMarker(row_index, first_col)
            continue

        lot_number = cell_text(_cell(row, 1))
        if not lot_number:
            yield SkippedRow(row_index, SkipReason.MISSING_LOT_NUMBER)
            continue

        quantity = parse_quantity(_cell(row, 2))
        if quantity is None:
            yield SkippedRow(row_index, SkipReason.INVALID_QUANTITY)
            continue
        if quantity < 0:
            yield SkippedRow(row_index, SkipReason.NEGATIVE_QUANTITY)
            continue

        yarn_name = first_col or last_yarn_name
        if not yarn_name:
            yield SkippedRow(row_index, SkipReason.MISSING_YARN_NAME)
            continue
        last_yarn_name = yarn_name

        location = cell_text(_cell(row, 3)) or section_location or policy.unknown_location

        yield ParsedRow(
            row_index,
            StockRecord(
                yarn_name=yarn_name,
                lot_number=lot_number,
                quantity=quantity,
                location=location,
                source_row=row_index,
            ),
        )


class SnapshotRows:
    """Restartable sequence of the valid stock records in a grid.

    Iterating yields ``StockRecord`` objects; each iteration re-walks the
    grid so section and fill-down state never leaks between passes.
    """

    def __init__(self, grid: Grid, policy: ReconciliationPolicy = DEFAULT_POLICY):
        self._grid = grid
        self._policy = policy

    def __iter__(self) -> Iterator[StockRecord]:
        for outcome in self.outcomes():
            if isinstance(outcome, ParsedRow):
                yield outcome.record

    def outcomes(self) -> Iterator[RowOutcome]:
        return iter_row_outcomes(self._grid, self._policy)

    def skipped(self) -> list[SkippedRow]:
        return [o for o in self.outcomes() if isinstance(o, SkippedRow)]


def parse_snapshot_grid(grid: Grid, policy: ReconciliationPolicy = DEFAULT_POLICY) -> list[StockRecord]:
    return list(SnapshotRows(grid, policy))


# ── File reading ───────────────────────────────────────────────────────────


def _read_csv_grid(content: bytes) -> list[list[Any]]:
    text = content.decode("utf-8-sig")
    return [list(row) for row in csv.reader(io.StringIO(text))]


def _read_excel_grid(content: bytes, suffix: str = "") -> list[list[Any]]:
    frame = pd.read_excel(
        io.BytesIO(content),
        sheet_name=0,
        header=None,
        dtype=object,
        engine=_EXCEL_ENGINES.get(suffix),
    )
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.values.tolist()


def read_snapshot_grid(content: bytes, filename: str | None = None) -> list[list[Any]]:
    """Read the first sheet of an uploaded file into a row/column grid.

    CSV is chosen by suffix; anything else is read as an Excel workbook,
    with xlrd for legacy ``.xls`` files and openpyxl for ``.xlsx``.
    Raises ``SnapshotFormatError`` when the bytes are not a readable table.
    """
    suffix = PurePath(filename).suffix.lower() if filename else ""
    if not content:
        raise SnapshotFormatError(filename, "file is empty")
    try:
        if suffix in _CSV_SUFFIXES:
            grid = _read_csv_grid(content)
        else:
            grid = _read_excel_grid(content, suffix)
    except Exception as exc:
        logger.warning("snapshot.read_failed", filename=filename, error=str(exc))
        raise SnapshotFormatError(filename, str(exc) or type(exc).__name__) from exc

    logger.info("snapshot.read", filename=filename, rows=len(grid))
    return grid
