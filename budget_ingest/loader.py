"""
loader.py: read any supported spreadsheet into a plain cell grid.

Supports: .xlsx .xlsm .xls .ods .csv .tsv .txt

Every sheet becomes a list of rows and every row a list of raw cell values
(str, int, float, datetime or None). No header is assumed; finding the header
is the schema sniffer's job.

Public API:
    workbook = load_workbook("path/to/export.xlsx")
    for sheet in workbook.sheets:
        sheet.name, sheet.rows
"""

from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls"}
ODS_FORMATS = {".ods"}
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
ALL_FORMATS = MODERN_WORKBOOK_FORMATS | LEGACY_WORKBOOK_FORMATS | ODS_FORMATS | TEXT_FORMATS


class WorkbookLoadError(ValueError):
    pass


@dataclass
class Sheet:
    name: str
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def cell(self, row: int, col: int) -> Any:
        if row < 0 or row >= len(self.rows):
            return None
        values = self.rows[row]
        if col < 0 or col >= len(values):
            return None
        return values[col]


@dataclass
class Workbook:
    sheets: list[Sheet] = field(default_factory=list)
    source: str | None = None
    detected_format: str | None = None
    detected_encoding: str | None = None

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    def sheet(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @property
    def is_empty(self) -> bool:
        return not any(sheet.rows for sheet in self.sheets)


def _clean_value(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str):
        return value.replace("\x00", "")
    return value


def _trim_row(values) -> list[Any]:
    row = [_clean_value(value) for value in values]
    while row and row[-1] is None:
        row.pop()
    return row


def _trim_rows(rows: list[list[Any]]) -> list[list[Any]]:
    while rows and not rows[-1]:
        rows.pop()
    return rows


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    import chardet

    result = chardet.detect(raw)
    detected = result.get("encoding") or "utf-8"
    logger.debug("chardet detected %s (confidence %.2f)", detected, result.get("confidence") or 0.0)
    return detected


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line: UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement so decoding never fails.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", "").rstrip("\r"))
    return "\n".join(decoded_lines)


def _detect_delimiter(text: str) -> str:
    sample = "\n".join([line for line in text.splitlines() if line.strip()][:25])
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_modern_workbook(path: Path) -> Workbook:
    from openpyxl import load_workbook as openpyxl_load_workbook

    try:
        wb = openpyxl_load_workbook(path, data_only=True, read_only=True)
    except Exception as exc:
        raise WorkbookLoadError(f"Could not open workbook: {exc}") from exc

    sheets: list[Sheet] = []
    try:
        for ws in wb.worksheets:
            rows = [_trim_row(values) for values in ws.iter_rows(values_only=True)]
            sheets.append(Sheet(name=ws.title, rows=_trim_rows(rows)))
    finally:
        wb.close()
    return Workbook(sheets=sheets, source=str(path), detected_format=path.suffix.lower().lstrip("."))


def _frames_to_workbook(frames: dict, path: Path, detected_format: str) -> Workbook:
    sheets = []
    for name, df in frames.items():
        rows = [_trim_row(values) for values in df.itertuples(index=False, name=None)]
        sheets.append(Sheet(name=str(name), rows=_trim_rows(rows)))
    return Workbook(sheets=sheets, source=str(path), detected_format=detected_format)


def _load_legacy_workbook(path: Path, suffix: str) -> Workbook:
    import pandas as pd

    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd, run: pip install 'budget-ingest[excel-legacy]'")
        engine = None
    else:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy, run: pip install 'budget-ingest[ods]'")
        engine = "odf"

    try:
        frames = pd.read_excel(path, sheet_name=None, header=None, engine=engine)
    except Exception as exc:
        raise WorkbookLoadError(f"Could not open workbook: {exc}") from exc
    return _frames_to_workbook(frames, path, suffix.lstrip("."))


def _load_text(path: Path, suffix: str) -> Workbook:
    import pandas as pd

    raw = path.read_bytes()
    encoding = _detect_encoding(raw)
    text = _read_text_safely(raw, encoding)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)

    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            keep_default_na=False,
            on_bad_lines="skip",
            sep=sep,
            engine="python",
            skip_blank_lines=False,
        )
    except pd.errors.EmptyDataError:
        df = pd.DataFrame()
    except Exception as exc:
        raise WorkbookLoadError(f"Could not parse {suffix} file: {exc}") from exc

    rows = [
        _trim_row(None if value == "" else value for value in values)
        for values in df.itertuples(index=False, name=None)
    ]
    workbook = Workbook(
        sheets=[Sheet(name=path.stem, rows=_trim_rows(rows))],
        source=str(path),
        detected_format=suffix.lstrip("."),
        detected_encoding=encoding,
    )
    return workbook


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_workbook(path: str | Path) -> Workbook:
    """
    Load any supported file into a Workbook of raw cell grids.

    Raises:
        FileNotFoundError  if the file does not exist.
        WorkbookLoadError  if the format is unsupported or unreadable.
        ImportError        if a required optional reader is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise WorkbookLoadError(f"Unsupported format '{suffix or '[missing extension]'}'. Supported: {supported}")

    if suffix in MODERN_WORKBOOK_FORMATS:
        workbook = _load_modern_workbook(path)
    elif suffix in TEXT_FORMATS:
        workbook = _load_text(path, suffix)
    else:
        workbook = _load_legacy_workbook(path, suffix)

    logger.info("Loaded %s: %d sheet(s) %s", path.name, len(workbook.sheets), workbook.sheet_names)
    return workbook


def workbook_from_rows(sheets: dict[str, list[list[Any]]]) -> Workbook:
    """Build a Workbook from in-memory grids, keeping sheet order."""
    return Workbook(sheets=[Sheet(name=name, rows=[list(row) for row in rows]) for name, rows in sheets.items()])
