import re
from typing import Any, List, Sequence

import pandas as pd

# ===============================================================================
# CELL CLEANING
# ===============================================================================

_LINE_BREAKS = re.compile(r"\r\n|\r|\n")
_SPACES = re.compile(r"[ \t\u00a0]+")


def clean_cell(value: Any, keep_line_breaks: bool = False) -> str:
    """Trim a raw cell; missing values become ''."""
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        # list-like cells: pd.isna returns an array
        pass

    text = str(value)
    if keep_line_breaks:
        lines = [_SPACES.sub(" ", line).strip() for line in _LINE_BREAKS.split(text)]
        return "\n".join(line for line in lines if line)

    return _SPACES.sub(" ", _LINE_BREAKS.sub(" ", text)).strip()


def split_lines(text: str) -> List[str]:
    """Split a multi-line cell into its non-empty trimmed lines."""
    return [line.strip() for line in _LINE_BREAKS.split(text or "") if line.strip()]


def is_blank_row(cells: Sequence[Any]) -> bool:
    return all(not clean_cell(c) for c in cells)


# ===============================================================================
# FRAME HELPERS
# ===============================================================================

def frame_from_rows(rows: Sequence[Sequence[Any]]) -> pd.DataFrame:
    """Build a rectangular, header-less frame from ragged rows."""
    rows = [list(r) for r in rows]
    width = max((len(r) for r in rows), default=0)
    padded = [r + [""] * (width - len(r)) for r in rows]
    return pd.DataFrame(padded, columns=range(width), dtype=object)


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return an all-string copy of ``df`` with every cell cleaned.

    Line breaks inside cells survive (as ``\\n``) so eligibility text can be
    split into list items later; everything else is flattened when read.
    """
    if df.empty:
        return pd.DataFrame(dtype=object)
    cleaned = df.copy()
    cleaned.columns = range(cleaned.shape[1])
    cleaned = cleaned.reset_index(drop=True).astype(object)
    return cleaned.map(lambda v: clean_cell(v, keep_line_breaks=True))


def row_values(df: pd.DataFrame, idx: int) -> List[str]:
    """Flattened cell texts of row ``idx``."""
    return [clean_cell(v) for v in df.iloc[idx].tolist()]


def frame_rows(df: pd.DataFrame) -> List[List[str]]:
    """All rows of a normalized frame as lists, line breaks preserved."""
    return [[str(v) for v in row] for row in df.values.tolist()]
