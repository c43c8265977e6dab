from __future__ import annotations

import csv
import logging
import zipfile
from io import BytesIO, StringIO

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from rm_portal.errors import ValidationError

logger = logging.getLogger(__name__)

WORKBOOK_SUFFIXES = ('.xlsx', '.xlsm')
CSV_SUFFIXES = ('.csv',)


def _suffix(filename: str) -> str:
    name = (filename or '').strip().lower()
    return name[name.rfind('.') :] if '.' in name else ''


def read_workbook_rows(payload: bytes) -> list[list]:
    try:
        workbook = load_workbook(filename=BytesIO(payload), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValidationError(f'Invalid workbook: {exc}') from exc
    try:
        sheet = workbook.worksheets[0]
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def read_csv_rows(payload: bytes) -> list[list]:
    try:
        text = payload.decode('utf-8-sig')
    except UnicodeDecodeError:
        text = payload.decode('latin-1')
    return [row for row in csv.reader(StringIO(text))]


def read_rows(*, filename: str, payload: bytes) -> list[list]:
    """Return every row of the first sheet, header included. Cells are raw values."""
    if not payload:
        raise ValidationError('Uploaded file is empty')
    suffix = _suffix(filename)
    if suffix in WORKBOOK_SUFFIXES:
        rows = read_workbook_rows(payload)
    elif suffix in CSV_SUFFIXES:
        rows = read_csv_rows(payload)
    else:
        raise ValidationError(f'Unsupported file type: {filename or "unnamed"} (expected .xlsx, .xlsm or .csv)')
    logger.info('spreadsheet read', extra={'upload_filename': filename, 'row_count': len(rows)})
    return rows
