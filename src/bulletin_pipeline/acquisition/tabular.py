"""Spreadsheet acquisition: CSV and Excel exports as header + row mappings.

Tabular exports skip the positional stages entirely: the header row already
defines the columns, so rows feed the row-to-column stage directly.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from openpyxl import load_workbook

from bulletin_pipeline.errors import AcquisitionFailure
from bulletin_pipeline.stages.stage2_columns import HEADER_KEYWORD_RE

logger = logging.getLogger(__name__)

CSV_SUFFIXES = {".csv", ".txt"}
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


@dataclass(frozen=True)
class TabularDocument:
    """Rows of a spreadsheet keyed by header label.

    Attributes:
        header: Unique column labels in sheet order.
        rows: One mapping per data row; every mapping has every header key.
        preamble: Non-empty lines found above the header row (titles, class
            or term banners).
    """

    header: tuple[str, ...]
    rows: tuple[Mapping[str, str], ...]
    preamble: tuple[str, ...] = ()


def cell_text(value: object) -> str:
    """Render a spreadsheet cell as text without float noise."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _unique_labels(cells: Sequence[str]) -> tuple[str, ...]:
    labels: list[str] = []
    seen: dict[str, int] = {}
    for idx, raw in enumerate(cells, start=1):
        label = raw.strip() or f"Colonne {idx}"
        count = seen.get(label, 0) + 1
        seen[label] = count
        labels.append(label if count == 1 else f"{label} ({count})")
    return tuple(labels)


def _header_index(grid: Sequence[Sequence[str]]) -> int | None:
    """Locate the header row: first keyword row with 3+ cells, else first non-empty row."""

    first_non_empty: int | None = None
    for idx, cells in enumerate(grid):
        filled = [cell for cell in cells if cell.strip()]
        if not filled:
            continue
        if first_non_empty is None:
            first_non_empty = idx
        if len(filled) >= 3 and HEADER_KEYWORD_RE.search(" ".join(filled)):
            return idx
    return first_non_empty


def tabular_from_grid(grid: Sequence[Sequence[object]]) -> TabularDocument:
    """Build a :class:`TabularDocument` from raw row/column cell values.

    Args:
        grid: Rows of cell values, header row included somewhere near the top.

    Returns:
        Document whose rows are padded to the header width. Fully blank rows
        are dropped.
    """

    text_grid = [[cell_text(cell) for cell in row] for row in grid]
    header_idx = _header_index(text_grid)
    if header_idx is None:
        return TabularDocument(header=(), rows=())

    header = _unique_labels(text_grid[header_idx])
    preamble = tuple(
        " ".join(cell for cell in row if cell.strip())
        for row in text_grid[:header_idx]
        if any(cell.strip() for cell in row)
    )
    rows: list[dict[str, str]] = []
    for cells in text_grid[header_idx + 1 :]:
        if not any(cell.strip() for cell in cells):
            continue
        padded = list(cells[: len(header)]) + [""] * (len(header) - len(cells))
        rows.append(dict(zip(header, padded)))
    return TabularDocument(header=header, rows=tuple(rows), preamble=preamble)


def tabular_from_records(records: Sequence[Mapping[str, object]]) -> TabularDocument:
    """Build a document from already-keyed rows (``{column: value}``).

    The header is the union of keys in first-seen order.
    """

    header: list[str] = []
    for record in records:
        for key in record:
            if key not in header:
                header.append(key)
    rows = tuple({key: cell_text(record.get(key)) for key in header} for record in records)
    return TabularDocument(header=tuple(header), rows=rows)


def read_csv_text(text: str) -> TabularDocument:
    """Parse CSV text, sniffing the delimiter among ``;``, ``,`` and tab."""

    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=";,\t")
    except csv.Error:
        dialect = csv.excel
    grid = list(csv.reader(io.StringIO(text), dialect))
    return tabular_from_grid(grid)


def read_csv(source: Path | bytes) -> TabularDocument:
    """Read a CSV export from a path or raw bytes.

    Raises:
        AcquisitionFailure: If the file cannot be read or decoded.
    """

    try:
        raw = source if isinstance(source, (bytes, bytearray)) else Path(source).read_bytes()
    except OSError as exc:
        raise AcquisitionFailure(f"Cannot read CSV {source}: {exc}") from exc
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return read_csv_text(bytes(raw).decode(encoding))
        except UnicodeDecodeError:
            continue
    raise AcquisitionFailure(f"Cannot decode CSV {source} as UTF-8 or cp1252")


def read_xlsx(source: Path | bytes) -> TabularDocument:
    """Read the first worksheet of an Excel workbook.

    Raises:
        AcquisitionFailure: If the workbook cannot be opened.
    """

    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        workbook = load_workbook(handle, read_only=True, data_only=True)
    except Exception as exc:
        raise AcquisitionFailure(f"Cannot open workbook: {exc}") from exc
    try:
        sheet = workbook.worksheets[0]
        grid = [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    logger.info("Read %d spreadsheet row(s) from %s", len(grid), sheet.title)
    return tabular_from_grid(grid)


def read_tabular(path: Path) -> TabularDocument:
    """Dispatch on file suffix to the CSV or Excel reader.

    Raises:
        AcquisitionFailure: If the suffix is not a supported spreadsheet type.
    """

    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        return read_csv(path)
    if suffix in EXCEL_SUFFIXES:
        return read_xlsx(path)
    raise AcquisitionFailure(f"Unsupported spreadsheet type: {path.name}")
