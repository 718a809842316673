import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import pandas as pd

from backend.cells import clean_cell, frame_rows, is_blank_row, row_values
from backend.columns import ColumnRole, HeaderIndex, build_header_index
from backend.errors import StructuralError
from backend.pivot import PivotOptions, RateGroup, build_pivot

logger = logging.getLogger(__name__)

# ===============================================================================
# LAYOUT CONSTANTS
# ===============================================================================

PROMO_SHAPE_SCAN_ROWS = 40
STANDARD_MARKER = "STANDARD PROGRAM"
STANDARD_MARKER_ROWS = 10
STANDARD_WINDOW_ROWS = 23
STANDARD_HEADER_SCAN_ROWS = 30
STANDARD_SECTION_TITLES = ("NON-PARTNER", "PARTNER", "USED")

SHAPE_TERM = re.compile(r"^\d{2}m$", re.IGNORECASE)


class SheetFormat(Enum):
    PROMO = "promo"
    STANDARD = "standard"
    GENERIC = "generic"
    UNRECOGNIZED = "unrecognized"


@dataclass
class LayoutResult:
    """What a processor extracted from one sheet."""
    format: SheetFormat
    pattern: str
    groups: List[RateGroup] = field(default_factory=list)
    raw_header: List[str] = field(default_factory=list)
    raw_rows: List[List[str]] = field(default_factory=list)

    @property
    def is_raw(self) -> bool:
        return not self.groups and bool(self.raw_header)

    @property
    def is_empty(self) -> bool:
        return not self.groups and not self.raw_rows


@dataclass
class Classification:
    format: SheetFormat
    processor: Optional["LayoutProcessor"] = None
    missing: List[str] = field(default_factory=list)
    header: List[str] = field(default_factory=list)


def _header_row(df: pd.DataFrame) -> List[str]:
    return row_values(df, 0) if len(df) else []


def _is_shape_header(cells: List[str]) -> bool:
    """First cell mentions a tier and at least three cells look like '36M'."""
    if not cells or "tier" not in cells[0].lower():
        return False
    return sum(1 for c in cells[1:] if SHAPE_TERM.match(c)) >= 3


def _is_tier_header(cells: List[str]) -> bool:
    first = cells[0].strip().lower() if cells else ""
    return first in ("tier", "tiers") or _is_shape_header(cells)


def _first_text(cells: List[str]) -> str:
    return next((c for c in cells if c), "")


# ===============================================================================
# BASE PROCESSOR CLASS
# ===============================================================================

class LayoutProcessor(ABC):
    """Base class for all sheet layout processors"""

    format: SheetFormat = SheetFormat.UNRECOGNIZED

    @abstractmethod
    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        """Detect if this processor can handle the given sheet"""
        pass

    @abstractmethod
    def process(self, df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        """Process the sheet into rate groups or a raw grid"""
        pass

    @abstractmethod
    def get_pattern_name(self) -> str:
        """Return the pattern name for display"""
        pass


# ===============================================================================
# PROMO LAYOUT 1: GROUPED BY PROGRAM (header trio)
# ===============================================================================

class PromoHeaderProcessor(LayoutProcessor):
    """
    Promotional sheet with one row per program/tier.
    Header row carries a grouping column (Table Group / Program Name),
    an eligibility or product column, and a Tiers column.
    """

    format = SheetFormat.PROMO

    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        index = build_header_index(_header_row(df))
        has_group = index.has(ColumnRole.TABLE_GROUP) or index.has(ColumnRole.PROGRAM_NAME)
        has_eligibility = index.has(ColumnRole.ELIGIBILITY) or index.has(ColumnRole.PRODUCT)
        return has_group and has_eligibility and index.has(ColumnRole.TIER)

    def get_pattern_name(self) -> str:
        return "Promotional (Grouped by Program)"

    def process(self, df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        index = build_header_index(_header_row(df))
        logger.info(
            "Promo columns: %s",
            {role.label: loc.index for role, loc in index.roles.items() if loc.present},
        )
        groups = build_pivot(index, frame_rows(df)[1:], options)
        return LayoutResult(format=self.format, pattern=self.get_pattern_name(), groups=groups)


# ===============================================================================
# SECTIONED LAYOUTS (tier header row followed by titled sub-tables)
# ===============================================================================

@dataclass
class _Section:
    title: str
    index: HeaderIndex
    rows: List[List[str]] = field(default_factory=list)


def starts_with_tier(cells: List[str], index: HeaderIndex) -> bool:
    return cells[0].upper().startswith("TIER")


def has_term_value(cells: List[str], index: HeaderIndex) -> bool:
    """Any cell under one of the header's term columns is filled."""
    return any(idx < len(cells) and cells[idx] for idx, _ in index.term_columns)


def split_sections(
    rows: List[List[str]],
    header_at: int,
    stop: int,
    is_title: Callable[[List[str]], bool],
    untitled: str,
    is_data: Callable[[List[str], HeaderIndex], bool] = starts_with_tier,
) -> List[_Section]:
    """Cut the rows after ``header_at`` (up to ``stop``) into sub-tables.

    A blank row closes the open sub-table, a title row opens a new titled
    one, a repeated tier header re-locates the columns, and rows accepted
    by ``is_data`` (by default: starting with "Tier") are data. Anything
    else (footnotes) is ignored.
    """
    index = build_header_index(rows[header_at])
    sections: List[_Section] = []
    current: Optional[_Section] = None
    pending_title = ""

    def close() -> None:
        nonlocal current
        if current is not None and current.rows:
            sections.append(current)
        current = None

    for cells in rows[header_at + 1:stop]:
        flat = [clean_cell(c) for c in cells]
        if is_blank_row(flat):
            close()
            continue

        if _is_tier_header(flat):
            close()
            index = build_header_index(flat)
            continue

        if is_data(flat, index):
            if current is None:
                title = pending_title or f"{untitled} {len(sections) + 1}"
                current = _Section(title=title, index=index)
                pending_title = ""
            current.rows.append(cells)
            continue

        if is_title(flat):
            close()
            pending_title = _first_text(flat)

    close()
    return sections


class _SectionedProcessor(LayoutProcessor):
    untitled = "Rate Table"

    def _is_title(self, cells: List[str]) -> bool:
        return False

    def _is_data(self, cells: List[str], index: HeaderIndex) -> bool:
        return starts_with_tier(cells, index)

    def _pivot_sections(self, rows: List[List[str]], header_at: int, stop: int, options: PivotOptions) -> LayoutResult:
        sections = split_sections(rows, header_at, stop, self._is_title, self.untitled, self._is_data)
        logger.info("Header at row %d, %d section(s)", header_at + 1, len(sections))

        groups: List[RateGroup] = []
        for section in sections:
            groups.extend(build_pivot(section.index, section.rows, options, default_group=section.title))
        return LayoutResult(format=self.format, pattern=self.get_pattern_name(), groups=groups)


# ===============================================================================
# PROMO LAYOUT 2: ROW-SHAPE SCAN (Tier | 24M | 36M | 48M ...)
# ===============================================================================

class PromoShapeProcessor(_SectionedProcessor):
    """
    Promotional sheet without recognisable column names.
    Found by shape: within the first 40 rows, a row whose first cell mentions
    "tier" followed by at least three "NNM" term cells.
    """

    format = SheetFormat.PROMO
    untitled = "Rate Table"

    def _is_data(self, cells: List[str], index: HeaderIndex) -> bool:
        # tier labels may be bare ("1", "A+"); the term cells decide
        return has_term_value(cells, index)

    def _is_title(self, cells: List[str]) -> bool:
        # a label alone on its row
        return bool(cells and cells[0]) and not any(cells[1:])

    def _find_header(self, df: pd.DataFrame) -> int:
        for i in range(min(PROMO_SHAPE_SCAN_ROWS, len(df))):
            if _is_shape_header(row_values(df, i)):
                return i
        return -1

    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        return self._find_header(df) >= 0

    def get_pattern_name(self) -> str:
        return "Promotional (Tier x Term Grid)"

    def process(self, df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        header_at = self._find_header(df)
        if header_at < 0:
            raise StructuralError("Could not locate the tier/term header row.")
        rows = frame_rows(df)
        return self._pivot_sections(rows, header_at, len(rows), options)


# ===============================================================================
# STANDARD LAYOUTS
# ===============================================================================

class _StandardProcessor(_SectionedProcessor):
    format = SheetFormat.STANDARD
    untitled = "Standard Rates - Table"
    header_scan_rows = STANDARD_HEADER_SCAN_ROWS

    def _is_title(self, cells: List[str]) -> bool:
        first = cells[0].upper() if cells else ""
        return any(marker in first for marker in STANDARD_SECTION_TITLES)

    def _find_header(self, df: pd.DataFrame) -> int:
        for i in range(min(self.header_scan_rows, len(df))):
            cells = row_values(df, i)
            if cells and "tier" in cells[0].lower():
                return i
        return -1

    def _stop(self, df: pd.DataFrame) -> int:
        return len(df)

    def process(self, df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        header_at = self._find_header(df)
        if header_at < 0:
            raise StructuralError("Could not locate Standard header row.", missing=[ColumnRole.TIER.label])
        return self._pivot_sections(frame_rows(df), header_at, self._stop(df), options)


class StandardMarkerProcessor(_StandardProcessor):
    """
    Standard program sheet announced by a "STANDARD PROGRAM" title
    somewhere in its first 10 rows.
    """

    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        head = df.head(STANDARD_MARKER_ROWS)
        return any(STANDARD_MARKER in clean_cell(v).upper() for v in head.values.ravel())

    def get_pattern_name(self) -> str:
        return "Standard Program (Marker)"


class StandardWindowProcessor(_StandardProcessor):
    """
    Standard sheet with a fixed shape: a "TIERS" header in the first 23 rows,
    then PARTNER / NON-PARTNER / USED sub-tables, read no further than row 23.
    """

    def _find_header(self, df: pd.DataFrame) -> int:
        for i in range(min(STANDARD_WINDOW_ROWS, len(df))):
            cells = row_values(df, i)
            if cells and "TIERS" in cells[0].upper():
                return i
        return -1

    def _stop(self, df: pd.DataFrame) -> int:
        return min(len(df), STANDARD_WINDOW_ROWS)

    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        return self._find_header(df) >= 0

    def get_pattern_name(self) -> str:
        return "Standard Program (Fixed Window)"


# ===============================================================================
# GENERIC TABULAR FALLBACK
# ===============================================================================

class GenericTableProcessor(LayoutProcessor):
    """
    Plain table whose header names tiers but none of the promo grouping
    columns. Pivoted when rates can be located, otherwise echoed as-is.
    """

    format = SheetFormat.GENERIC

    def detect(self, df: pd.DataFrame, sheet_name: str) -> bool:
        index = build_header_index(_header_row(df))
        return index.has(ColumnRole.TIER) or bool(index.tier_rate_columns)

    def get_pattern_name(self) -> str:
        return "Generic Table"

    def process(self, df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        header = _header_row(df)
        index = build_header_index(header)
        rows = frame_rows(df)[1:]

        if index.has_rates:
            groups = build_pivot(index, rows, options)
            return LayoutResult(format=self.format, pattern=self.get_pattern_name(), groups=groups)

        raw_rows = [[clean_cell(c) for c in r] for r in rows if not is_blank_row(r)]
        return LayoutResult(
            format=self.format,
            pattern=f"{self.get_pattern_name()} (Raw)",
            raw_header=header,
            raw_rows=raw_rows,
        )


# ===============================================================================
# LAYOUT DETECTOR AND DISPATCHER
# ===============================================================================

def _missing_promo_columns(index: HeaderIndex) -> List[str]:
    missing = []
    if not (index.has(ColumnRole.TABLE_GROUP) or index.has(ColumnRole.PROGRAM_NAME)):
        missing.append(f"{ColumnRole.TABLE_GROUP.label}/{ColumnRole.PROGRAM_NAME.label}")
    if not (index.has(ColumnRole.ELIGIBILITY) or index.has(ColumnRole.PRODUCT)):
        missing.append(ColumnRole.ELIGIBILITY.label)
    if not index.has(ColumnRole.TIER):
        missing.append(ColumnRole.TIER.label)
    return missing


class LayoutDetector:
    """Detects which layout a sheet follows and routes it to its processor"""

    # Fixed priority; the first probe that matches wins
    PROCESSORS = [
        PromoHeaderProcessor(),           # explicit promo header trio
        PromoShapeProcessor(),            # Tier | NNM | NNM | NNM row
        StandardMarkerProcessor(),        # "STANDARD PROGRAM" title
        StandardWindowProcessor(),        # TIERS header in first 23 rows
        GenericTableProcessor(),          # any tier column
    ]

    @staticmethod
    def classify(df: pd.DataFrame, sheet_name: str = "") -> Classification:
        """Run the probes in order against a normalized frame"""
        logger.info("Detecting layout for %r (%d rows x %d columns)", sheet_name, df.shape[0], df.shape[1])

        for i, processor in enumerate(LayoutDetector.PROCESSORS, 1):
            try:
                matched = processor.detect(df, sheet_name)
            except (IndexError, KeyError, ValueError) as e:
                logger.warning("Probe %s failed: %s", processor.get_pattern_name(), e)
                continue

            logger.debug("Probe %d/%d %s: %s", i, len(LayoutDetector.PROCESSORS),
                         processor.get_pattern_name(), "match" if matched else "no match")
            if matched:
                logger.info("Selected layout: %s", processor.get_pattern_name())
                return Classification(format=processor.format, processor=processor)

        header = _header_row(df)
        missing = _missing_promo_columns(build_header_index(header))
        logger.warning("No layout matched; missing %s", missing)
        return Classification(format=SheetFormat.UNRECOGNIZED, missing=missing, header=header)

    @staticmethod
    def process_sheet(df: pd.DataFrame, sheet_name: str, options: PivotOptions) -> LayoutResult:
        """Classify the sheet and process it, or fail with a StructuralError"""
        classification = LayoutDetector.classify(df, sheet_name)
        if classification.processor is None:
            raise StructuralError(
                "CSV format not recognized as Promotional or Standard. "
                f"Missing columns: {', '.join(classification.missing)}. "
                f"Header: {classification.header}",
                missing=classification.missing,
                header=classification.header,
            )
        return classification.processor.process(df, sheet_name, options)
