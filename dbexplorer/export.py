"""Export of loaded rows to CSV and Excel files."""

import csv
from pathlib import Path

import openpyxl

from .editor import format_value


def safe_file_name(file_name, fallback, extension):
    """Trimmed file name with the extension, or the fallback when blank."""
    name = (file_name or "").strip() or fallback
    suffix = f".{extension.lstrip('.')}"
    if name.lower().endswith(suffix.lower()):
        return name
    return f"{name}{suffix}"


def _cell_text(value):
    return "" if value is None else format_value(value)


def export_csv(path, columns, rows):
    path = Path(path)
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([_cell_text(value) for value in row])
    return path


def export_xlsx(path, columns, rows):
    path = Path(path)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(list(columns))
    for row in rows:
        ws.append([_cell_text(value) for value in row])
    wb.save(path)
    return path


def export_page(path, page):
    """Write a TablePage to ``path``; the extension picks the format."""
    columns = page.column_names
    rows = [row.values for row in page.rows]
    if str(path).lower().endswith(".xlsx"):
        return export_xlsx(path, columns, rows)
    return export_csv(path, columns, rows)
