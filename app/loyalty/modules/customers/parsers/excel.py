from __future__ import annotations

import io
import logging
from collections.abc import Iterable, Sequence
from typing import Any

import xlrd
from openpyxl import load_workbook

logger = logging.getLogger(__name__)

# Legacy .xls workbooks are OLE2 compound documents; .xlsx are zip archives.
_OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class ImportFileError(ValueError):
    """File-level problem; aborts the import before anything is persisted."""


class MalformedFileError(ImportFileError):
    pass


class EmptyFileError(ImportFileError):
    pass


def _xlsx_rows(data: bytes) -> list[tuple[Any, ...]]:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        if not wb.worksheets:
            raise MalformedFileError("Workbook has no sheets.")
        return [tuple(r) for r in wb.worksheets[0].iter_rows(values_only=True)]
    finally:
        wb.close()


def _xls_cell_value(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate_as_datetime(cell.value, datemode)
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return cell.value


def _xls_rows(data: bytes) -> list[tuple[Any, ...]]:
    book = xlrd.open_workbook(file_contents=data)
    if book.nsheets == 0:
        raise MalformedFileError("Workbook has no sheets.")
    sheet = book.sheet_by_index(0)
    return [
        tuple(_xls_cell_value(c, book.datemode) for c in sheet.row(r))
        for r in range(sheet.nrows)
    ]


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_empty_row(row: Sequence[Any]) -> bool:
    return all(_is_empty(v) for v in row)


class _HeaderNames:
    """Header lookup by column index; unlabelled columns get __EMPTY, __EMPTY_1, ..."""

    def __init__(self, header_row: Sequence[Any]) -> None:
        self._names: list[str] = []
        self._placeholders = 0
        for h in header_row:
            name = None if _is_empty(h) else str(h).strip()
            self._names.append(name or self._placeholder())

    def _placeholder(self) -> str:
        suffix = f"_{self._placeholders}" if self._placeholders else ""
        self._placeholders += 1
        return f"__EMPTY{suffix}"

    def __getitem__(self, col: int) -> str:
        # Ragged .xls rows can run past the header row.
        while col >= len(self._names):
            self._names.append(self._placeholder())
        return self._names[col]


def rows_to_mappings(rows: Iterable[Sequence[Any]]) -> list[dict[str, Any]]:
    """
    The first non-empty row is the header. Empty cells are omitted and fully
    empty rows are skipped; cells under an unlabelled column are kept under a
    placeholder key so the row still reaches validation.
    """
    it = iter(rows)
    header_row = next((r for r in it if not _is_empty_row(r)), None)
    if header_row is None:
        return []
    headers = _HeaderNames(header_row)

    out: list[dict[str, Any]] = []
    for raw in it:
        mapping: dict[str, Any] = {}
        for col, value in enumerate(raw):
            if _is_empty(value):
                continue
            header = headers[col]
            if header in mapping:
                continue
            mapping[header] = value
        if mapping:
            out.append(mapping)
    return out


def extract_rows(data: bytes) -> list[dict[str, Any]]:
    """
    Read the first sheet of an Excel workbook into a list of {header: value} dicts,
    one per non-empty data row, in sheet order.

    Raises MalformedFileError when the payload is not a readable .xlsx/.xls workbook.
    """
    if not data:
        raise MalformedFileError("Uploaded file is empty or unreadable.")
    is_xls = data[:8] == _OLE2_SIGNATURE
    try:
        rows = _xls_rows(data) if is_xls else _xlsx_rows(data)
    except MalformedFileError:
        raise
    except Exception as e:
        logger.warning("Could not parse spreadsheet (format=%s): %s", "xls" if is_xls else "xlsx", e)
        raise MalformedFileError(f"Could not read Excel file: {e}") from e
    return rows_to_mappings(rows)
