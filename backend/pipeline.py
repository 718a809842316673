import csv
import io
import logging
import zipfile
from typing import Any, List, Optional, Sequence

import pandas as pd

from backend.cells import frame_from_rows, is_blank_row, normalize_frame
from backend.errors import UnsupportedUploadError
from backend.layouts import LayoutDetector, LayoutResult, SheetFormat
from backend.pivot import PivotOptions
from backend.render import render_result

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv", ".txt")
EXCEL_EXTENSIONS = (".xlsx",)

# ===============================================================================
# LOADING
# ===============================================================================

def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise UnsupportedUploadError(f"File is not valid UTF-8 text: {e}") from e


def read_upload(content: bytes, filename: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """Load an uploaded CSV or workbook as a header-less, all-string frame"""
    name = (filename or "").lower()

    if name.endswith(CSV_EXTENSIONS):
        rows = list(csv.reader(io.StringIO(_decode(content))))
        return frame_from_rows(rows)

    if name.endswith(EXCEL_EXTENSIONS):
        try:
            xls = pd.ExcelFile(io.BytesIO(content))
            target = sheet_name if sheet_name else xls.sheet_names[0]
            if target not in xls.sheet_names:
                raise UnsupportedUploadError(f"Sheet '{target}' not found in file")
            return xls.parse(target, header=None, dtype=str)
        except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
            raise UnsupportedUploadError(f"Could not read workbook: {e}") from e

    raise UnsupportedUploadError("Only CSV (.csv) or Excel (.xlsx) files are allowed")


def list_worksheets(content: bytes, filename: str) -> List[str]:
    if not (filename or "").lower().endswith(EXCEL_EXTENSIONS):
        raise UnsupportedUploadError("Only Excel files (.xlsx) have worksheets")
    try:
        return [str(name) for name in pd.ExcelFile(io.BytesIO(content)).sheet_names]
    except (ValueError, OSError, zipfile.BadZipFile) as e:
        raise UnsupportedUploadError(f"Could not read workbook: {e}") from e


def frame_from_values(values: Sequence[Sequence[Any]]) -> pd.DataFrame:
    """Frame from Sheets API rows (trailing empty cells are omitted by the API)"""
    return frame_from_rows(values)


# ===============================================================================
# PROCESSING
# ===============================================================================

def build_rate_sheet(df: pd.DataFrame, options: Optional[PivotOptions] = None, sheet_name: str = "") -> LayoutResult:
    """Normalize, detect the layout and pivot. Raises StructuralError when unrecognized."""
    options = options or PivotOptions()
    frame = normalize_frame(df)

    non_blank = sum(1 for row in frame.values.tolist() if not is_blank_row(row))
    logger.info("Sheet %r: %d row(s), %d non-blank", sheet_name, len(frame), non_blank)
    if non_blank <= 1:
        # header only, or nothing at all
        return LayoutResult(format=SheetFormat.GENERIC, pattern="Empty Sheet")

    result = LayoutDetector.process_sheet(frame, sheet_name, options)
    logger.info("Layout %s produced %d group(s)", result.pattern, len(result.groups))
    return result


def render_fragment(df: pd.DataFrame, options: Optional[PivotOptions] = None, sheet_name: str = "") -> str:
    return render_result(build_rate_sheet(df, options, sheet_name))
