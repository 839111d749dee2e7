"""Import sources: the source interface and an .xlsx spreadsheet reader."""

from __future__ import annotations

import logging
import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .process import ProcessError

log = logging.getLogger(__name__)

MAX_ROWS = 100000
MAX_COLS = 1000

_MAIN = "{http://schemas.openxmlformats.org/spreadsheetml/2006/main}"
_REL = "{http://schemas.openxmlformats.org/officeDocument/2006/relationships}"
_PKG = "{http://schemas.openxmlformats.org/package/2006/relationships}"


class CellType(IntEnum):
    UNKNOWN = 0
    BOOL = 1
    DATETIME = 2
    ERROR = 3
    NUMBER = 4
    STRING = 5


_CELL_TYPES = {
    "b": CellType.BOOL,
    "d": CellType.DATETIME,
    "e": CellType.ERROR,
    "n": CellType.NUMBER,
    "s": CellType.STRING,
    "str": CellType.STRING,
    "inlineStr": CellType.STRING,
}


@dataclass(frozen=True)
class SourceColumn:
    """A header cell of a source sheet."""

    name: str
    type: CellType
    axis: str


@dataclass(frozen=True)
class Inspect:
    sheet_name: str
    sheet_index: int
    col_start: int
    row_start: int


Row = list[Any]
ChunkCallback = Callable[[int, list[Row]], None]


class Source(ABC):
    """A tabular file that can be imported."""

    @abstractmethod
    def data(self, row: int, size: int, axes: Sequence[str]) -> list[Row]: ...

    @abstractmethod
    def columns(self) -> list[SourceColumn]: ...

    @abstractmethod
    def chunk(self, size: int, axes: Sequence[str], callback: ChunkCallback) -> None: ...

    @abstractmethod
    def inspect(self) -> Inspect: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> Source:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class XlsxError(ProcessError):
    """The spreadsheet cannot be opened or read."""

    def __init__(self, message: str, code: int = 400) -> None:
        super().__init__(message, code)


def position_to_axis(row: int, col: int) -> str:
    """Cell name of a zero-based position; "" for negative positions."""
    if row < 0 or col < 0:
        return ""
    letters = ""
    col += 1
    while col > 0:
        letters = chr(ord("A") + col % 26 - 1) + letters
        col //= 26
    return f"{letters}{row + 1}"


_INTEGER = re.compile(r"[+-]?\d+")
_CELL_REF = re.compile(r"([A-Za-z]+)(\d+)")


def _parse_axis(axis: str) -> tuple[int, int, str | None]:
    """Zero-based (row, col) and an error message, or None when valid."""
    col = 0
    for i, char in enumerate(axis):
        if "A" <= char <= "Z":
            col = col * 26 + ord(char) - ord("A") + 1
        elif "a" <= char <= "z":
            col = col * 26 + ord(char) - ord("a") + 1
        else:
            rest = axis[i:]
            if _INTEGER.fullmatch(rest):
                return int(rest) - 1, col - 1, None
            return -1, col - 1, f"invalid row number {rest!r} in {axis!r}"
    return -1, -1, f"invalid axis format {axis}"


def axis_to_position(axis: str) -> tuple[int, int]:
    """Zero-based (row, col) of a cell name such as "C2"; raise ValueError when invalid."""
    row, col, error = _parse_axis(axis)
    if error is not None:
        raise ValueError(error)
    return row, col


def _cell_coordinates(axis: str) -> tuple[int, int]:
    match = _CELL_REF.fullmatch(axis or "")
    if match is None or int(match.group(2)) < 1:
        raise ValueError(f"invalid cell name {axis!r}")
    col = 0
    for char in match.group(1).upper():
        col = col * 26 + ord(char) - ord("A") + 1
    return int(match.group(2)) - 1, col - 1


@dataclass(frozen=True)
class _Cell:
    kind: str
    value: str


def _rich_text(element: ET.Element) -> str:
    direct = element.find(f"{_MAIN}t")
    if direct is not None:
        return direct.text or ""
    return "".join(run.findtext(f"{_MAIN}t") or "" for run in element.findall(f"{_MAIN}r"))


def _cell_text(element: ET.Element, kind: str, shared: list[str]) -> str:
    if kind == "inlineStr":
        inline = element.find(f"{_MAIN}is")
        return "" if inline is None else _rich_text(inline)
    value = element.findtext(f"{_MAIN}v") or ""
    if kind == "s":
        try:
            return shared[int(value)]
        except (ValueError, IndexError):
            return ""
    return value


def _read_cells(root: ET.Element, shared: list[str]) -> tuple[dict[tuple[int, int], _Cell], int]:
    cells: dict[tuple[int, int], _Cell] = {}
    total = 0
    sheet_data = root.find(f"{_MAIN}sheetData")
    if sheet_data is None:
        return cells, 0
    next_row = 0
    for row_el in sheet_data.findall(f"{_MAIN}row"):
        ref = row_el.get("r")
        row = int(ref) - 1 if ref else next_row
        next_row = row + 1
        total = max(total, row + 1)
        next_col = 0
        for cell_el in row_el.findall(f"{_MAIN}c"):
            cell_ref = cell_el.get("r")
            col = _cell_coordinates(cell_ref)[1] if cell_ref else next_col
            next_col = col + 1
            kind = cell_el.get("t", "")
            cells[(row, col)] = _Cell(kind, _cell_text(cell_el, kind, shared))
    return cells, total


def _active_index(workbook: ET.Element, count: int) -> int:
    view = workbook.find(f"{_MAIN}bookViews/{_MAIN}workbookView")
    try:
        tab = int(view.get("activeTab", "0")) if view is not None else 0
    except ValueError:
        return 0
    return tab if 0 <= tab < count else 0


def _sheet_part(archive: zipfile.ZipFile, names: set[str], sheet: ET.Element, index: int) -> str:
    rel_id = sheet.get(f"{_REL}id")
    rels_part = "xl/_rels/workbook.xml.rels"
    if rel_id and rels_part in names:
        rels = ET.fromstring(archive.read(rels_part))
        for rel in rels.findall(f"{_PKG}Relationship"):
            if rel.get("Id") == rel_id:
                target = rel.get("Target", "")
                if target.startswith("/"):
                    return target.lstrip("/")
                return posixpath.normpath(posixpath.join("xl", target))
    return f"xl/worksheets/sheet{index + 1}.xml"


def _load(filename: str) -> tuple[str, int, dict[tuple[int, int], _Cell], int]:
    try:
        with zipfile.ZipFile(filename) as archive:
            names = set(archive.namelist())
            workbook = ET.fromstring(archive.read("xl/workbook.xml"))
            sheets = workbook.findall(f"{_MAIN}sheets/{_MAIN}sheet")
            if not sheets:
                raise XlsxError(f"failed to open file {filename}: the workbook has no sheets")
            index = _active_index(workbook, len(sheets))
            sheet = sheets[index]
            shared_part = "xl/sharedStrings.xml"
            shared = (
                [_rich_text(si) for si in ET.fromstring(archive.read(shared_part)).findall(f"{_MAIN}si")]
                if shared_part in names
                else []
            )
            part = _sheet_part(archive, names, sheet, index)
            cells, total_rows = _read_cells(ET.fromstring(archive.read(part)), shared)
    except (OSError, zipfile.BadZipFile, KeyError, ValueError, ET.ParseError) as exc:
        raise XlsxError(f"failed to open file {exc}") from exc
    return sheet.get("name", ""), index, cells, total_rows


class Xlsx(Source):
    """The active sheet of an .xlsx workbook.

    Rows are read through one shared cursor: columns() and chunk() continue
    from where the previous call stopped, while data() reads by position.
    """

    def __init__(
        self,
        sheet_name: str,
        sheet_index: int,
        cells: dict[tuple[int, int], _Cell],
        total_rows: int,
    ) -> None:
        self.sheet_name = sheet_name
        self.sheet_index = sheet_index
        self.col_start = 0
        self.row_start = 0
        self._cells = dict(cells)
        self._total_rows = total_rows
        self._cursor = 0

    @property
    def total_rows(self) -> int:
        return self._total_rows

    @property
    def total_cols(self) -> int:
        return max((col + 1 for _, col in self._cells), default=0)

    def close(self) -> None:
        self._cells = {}
        self._total_rows = 0
        self._cursor = 0

    def inspect(self) -> Inspect:
        return Inspect(
            sheet_name=self.sheet_name,
            sheet_index=self.sheet_index,
            col_start=self.col_start,
            row_start=self.row_start,
        )

    def _next_row(self) -> bool:
        if self._cursor < self._total_rows:
            self._cursor += 1
            return True
        return False

    def _current_row(self) -> list[str]:
        row = self._cursor - 1
        cols = [col for (r, col) in self._cells if r == row]
        width = max(cols, default=-1) + 1
        return [self._cells[(row, col)].value if (row, col) in self._cells else "" for col in range(width)]

    def _cell(self, axis: str) -> _Cell | None:
        try:
            position = _cell_coordinates(axis)
        except ValueError as exc:
            log.error("sheet=%s axis=%s: %s", self.sheet_name, axis, exc)
            return None
        return self._cells.get(position)

    def _cell_value(self, axis: str) -> str:
        cell = self._cell(axis)
        return "" if cell is None else cell.value

    def _cell_type(self, axis: str) -> CellType:
        cell = self._cell(axis)
        return CellType.UNKNOWN if cell is None else _CELL_TYPES.get(cell.kind, CellType.UNKNOWN)

    def _read_line(self, line: int, axes: Sequence[str]) -> tuple[Row, bool]:
        row: Row = []
        end = True
        for axis in axes:
            _, col, _ = _parse_axis(axis)
            value = self._cell_value(position_to_axis(line, col)) if col >= 0 else ""
            row.append(value)
            if value != "":
                end = False
        return row, end

    def data(self, row: int, size: int, axes: Sequence[str]) -> list[Row]:
        """Read up to size rows from zero-based row, stopping at an empty row."""
        rows: list[Row] = []
        for line in range(row, row + size):
            values, end = self._read_line(line, axes)
            if end:
                break
            rows.append(values)
        return rows

    def chunk(self, size: int, axes: Sequence[str], callback: ChunkCallback) -> None:
        """Call callback(line, rows) for every size rows left under the cursor."""
        if size <= 0:
            raise ValueError("chunk size must be positive")
        line = 0
        batch: list[Row] = []
        while self._next_row():
            line += 1
            if line < self.row_start:
                continue
            values, end = self._read_line(line, axes)
            if end:
                callback(line, batch)
                return
            batch.append(values)
            if line % size == 0:
                callback(line, batch)
                batch = []
        if batch:
            callback(line, batch)

    def columns(self) -> list[SourceColumn]:
        """Header cells: the non-empty cells of the first non-empty row."""
        columns: list[SourceColumn] = []
        line = 0
        while self._next_row():
            found = False
            for i, cell in enumerate(self._current_row()):
                if cell == "":
                    continue
                found = True
                axis = position_to_axis(line, i)
                if self.row_start == 0 and self.col_start == 0:
                    self.row_start = line + 1
                    self.col_start = i + 1
                columns.append(SourceColumn(name=cell, type=self._cell_type(axis), axis=axis))
            if found:
                break
            line += 1
        return columns


def open_xlsx(filename: str) -> Xlsx:
    """Open the active sheet of a workbook; raise XlsxError when it cannot be used."""
    sheet_name, index, cells, total_rows = _load(filename)
    xlsx = Xlsx(sheet_name, index, cells, total_rows)
    if xlsx.total_rows > MAX_ROWS:
        raise XlsxError(f"sheet {sheet_name} has more than {MAX_ROWS} rows {xlsx.total_rows}")
    if xlsx.total_cols > MAX_COLS:
        raise XlsxError(f"sheet {sheet_name} has more than {MAX_COLS} columns {xlsx.total_cols}")
    return xlsx