"""
Tableau Relay - Spreadsheet Export
====================================
Turns the CSV summary data of a view into an in-memory .xlsx workbook.
"""

import csv
import io
import re

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Excel rejects these characters in sheet titles and caps titles at 31 chars.
_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")
_MAX_TITLE_LENGTH = 31


def sheet_title(name: str) -> str:
    """Sanitize a view name into a valid worksheet title."""
    title = _INVALID_TITLE_CHARS.sub("_", name or "").strip()
    return title[:_MAX_TITLE_LENGTH] or "Sheet1"


def export_filename(name: str) -> str:
    """File name for the attachment, e.g. 'Sales Overview.xlsx'."""
    stem = re.sub(r"[^A-Za-z0-9 ._-]+", "_", name or "").strip(" ._") or "export"
    return f"{stem}.xlsx"


def csv_to_workbook(csv_text: str, title: str = "Sheet1") -> bytes:
    """
    Write every CSV row into the active sheet of a new workbook.

    Args:
        csv_text: CSV content, header row first. A leading BOM is ignored,
                  as are control characters a worksheet cannot hold.
        title:    Worksheet title (sanitized).

    Returns:
        The serialized .xlsx file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title(title)

    reader = csv.reader(io.StringIO(csv_text.lstrip("\ufeff")))
    for row in reader:
        ws.append([ILLEGAL_CHARACTERS_RE.sub("", value) for value in row])

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
