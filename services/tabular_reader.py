"""
Tabular file reading for takeoff imports.

CSV files are read with the csv module; Excel workbooks with openpyxl
(first worksheet, computed values). Every cell value comes back as a
string so that downstream validation sees the same shape for both formats.
"""

import csv
import io
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Tuple, Union

import openpyxl

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.csv', '.xlsx', '.xlsm')

Table = Tuple[List[str], List[Dict[str, str]]]


class TabularReadError(ValueError):
    """File could not be read as a header row plus data rows."""


def _cell_to_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _build_table(raw_rows: List[List[str]]) -> Table:
    """Split the first non-blank row off as headers and key the rest by header."""
    rows_iter = iter(raw_rows)
    headers: List[str] = []
    for candidate in rows_iter:
        if any(cell.strip() for cell in candidate):
            headers = [cell.strip() for cell in candidate]
            break

    if not headers:
        raise TabularReadError('File has no header row')

    # Trailing unnamed columns carry no meaning
    while headers and headers[-1] == '':
        headers.pop()

    rows: List[Dict[str, str]] = []
    for raw in rows_iter:
        if not any(cell.strip() for cell in raw):
            continue
        row = {}
        for index, header in enumerate(headers):
            if header == '' or header in row:
                continue
            row[header] = raw[index] if index < len(raw) else ''
        rows.append(row)

    return headers, rows


def read_csv_text(text: str) -> Table:
    """Parse CSV text (header row first)."""
    if text.startswith('\ufeff'):
        text = text[1:]
    reader = csv.reader(io.StringIO(text))
    return _build_table([list(r) for r in reader])


def read_workbook(source: Union[str, Path, io.BytesIO]) -> Table:
    """Parse the first worksheet of an Excel workbook."""
    try:
        workbook = openpyxl.load_workbook(source, read_only=True, data_only=True)
    except Exception as e:
        raise TabularReadError(f"Could not open workbook: {e}") from e

    try:
        worksheet = workbook.worksheets[0]
        raw_rows = [
            [_cell_to_text(value) for value in row]
            for row in worksheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()

    return _build_table(raw_rows)


def read_tabular_bytes(file_name: str, content: bytes) -> Table:
    """
    Parse uploaded file content by extension.

    Raises:
        TabularReadError: unsupported extension, undecodable or empty file
    """
    ext = Path(file_name).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise TabularReadError(f"Unsupported file type: {ext or '(none)'}")
    if not content:
        raise TabularReadError('File is empty')

    if ext == '.csv':
        try:
            text = content.decode('utf-8')
        except UnicodeDecodeError:
            text = content.decode('latin-1')
        headers, rows = read_csv_text(text)
    else:
        headers, rows = read_workbook(io.BytesIO(content))

    logger.info(f"Read {file_name}: {len(headers)} columns, {len(rows)} data rows")
    return headers, rows


def read_tabular_file(file_path: Union[str, Path]) -> Table:
    """Parse a file from disk."""
    path = Path(file_path)
    return read_tabular_bytes(path.name, path.read_bytes())
