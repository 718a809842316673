"""
Pivot row-oriented rate data into tier x term tables.

A sheet can carry its rates in three shapes, and one row may use several:

- long form: a Tiers column, a term column and a rate column per row
- term-wide: a Tiers column plus one column per term ("36M", "48M")
- tier-wide: a term column plus one rate column per tier ("Promo Rate RT 1")

Every shape reduces to (tier, term, rate) observations which are filed under
the row's group. Rows lacking a tier, a term or a rate contribute nothing.
"""

import re
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from backend.cells import clean_cell, is_blank_row, split_lines
from backend.columns import ColumnRole, HeaderIndex, Located
from backend.config import DEFAULT_TIER_ORDER

_NUMERIC_TERM = re.compile(r"^(\d+(?:\.\d+)?)\s*(?:m|mo|mos|month|months)?\.?$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*(\d+)")

Observation = Tuple[str, str, str]


@dataclass(frozen=True)
class PivotOptions:
    tier_order: Tuple[str, ...] = DEFAULT_TIER_ORDER
    # False: tiers missing from tier_order follow the known ones in discovery order
    drop_unknown_tiers: bool = False


# ===============================================================================
# LABEL NORMALIZATION AND ORDERING
# ===============================================================================

def normalize_term(value) -> str:
    """'36', '36.0', '36 Months' -> '36M'. Non-numeric text is only trimmed."""
    text = clean_cell(value)
    match = _NUMERIC_TERM.match(text)
    if not match:
        return text
    return f"{int(float(match.group(1)))}M"


def normalize_tier(value) -> str:
    """'1' -> 'Tier 1'; values already starting with 'Tier ' are kept."""
    text = clean_cell(value)
    if not text:
        return ""
    if text.lower().startswith("tier "):
        return text
    return f"Tier {text}"


def _compare_terms(a: str, b: str) -> int:
    match_a, match_b = _LEADING_INT.match(a), _LEADING_INT.match(b)
    if match_a and match_b:
        num_a, num_b = int(match_a.group(1)), int(match_b.group(1))
        if num_a != num_b:
            return -1 if num_a < num_b else 1
    return (a > b) - (a < b)


def sort_terms(terms: Iterable[str]) -> List[str]:
    """Numeric terms ascending; pairs where either side is non-numeric compare as text."""
    return sorted(terms, key=cmp_to_key(_compare_terms))


def order_tiers(tiers: Sequence[str], options: PivotOptions) -> List[str]:
    """Known tiers in canonical order, then (unless dropped) the rest as discovered."""
    rank = {tier.casefold(): pos for pos, tier in enumerate(options.tier_order)}
    known = sorted((t for t in tiers if t.casefold() in rank), key=lambda t: rank[t.casefold()])
    if options.drop_unknown_tiers:
        return known
    return known + [t for t in tiers if t.casefold() not in rank]


# ===============================================================================
# GROUP MODEL
# ===============================================================================

@dataclass
class TierMeta:
    down_payment: str = ""
    front_end_cap: str = ""
    dealer_fee: str = ""

    def offer(self, attr: str, value: str) -> None:
        """Keep the first non-empty value seen for ``attr``."""
        if value and not getattr(self, attr):
            setattr(self, attr, value)


@dataclass
class RateGroup:
    name: str
    terms: Set[str] = field(default_factory=set)
    rates: Dict[str, Dict[str, str]] = field(default_factory=dict)
    meta: Dict[str, TierMeta] = field(default_factory=dict)
    # dict used as an insertion-ordered set
    eligibility: Dict[str, None] = field(default_factory=dict)
    # (TierMeta attribute, label) for each metadata column the source header resolved
    meta_columns: List[Tuple[str, str]] = field(default_factory=list)
    term_order: List[str] = field(default_factory=list)
    tier_order: List[str] = field(default_factory=list)

    def record(self, tier: str, term: str, rate: str) -> None:
        # later rows overwrite earlier ones for the same tier and term
        self.terms.add(term)
        self.rates.setdefault(tier, {})[term] = rate

    def tier_meta(self, tier: str) -> TierMeta:
        return self.meta.setdefault(tier, TierMeta())

    def add_eligibility(self, text: str) -> None:
        for line in split_lines(text):
            self.eligibility.setdefault(line, None)

    def rate(self, tier: str, term: str) -> str:
        return self.rates.get(tier, {}).get(term, "")

    @property
    def eligibility_items(self) -> List[str]:
        return list(self.eligibility)

    def finalize(self, options: PivotOptions) -> bool:
        """Fix output ordering. False when nothing is left to render."""
        self.tier_order = order_tiers(list(self.rates), options)
        self.term_order = sort_terms(self.terms)
        return bool(self.tier_order) and bool(self.term_order)


# ===============================================================================
# ROW READING
# ===============================================================================

META_ROLES = (
    (ColumnRole.DOWN_PAYMENT, "down_payment"),
    (ColumnRole.FRONT_END_CAP, "front_end_cap"),
    (ColumnRole.DEALER_FEE, "dealer_fee"),
)


def metadata_columns(index: HeaderIndex) -> List[Tuple[str, str]]:
    """(TierMeta attribute, column label) for each metadata role the sheet resolves."""
    columns = []
    for role, attr in META_ROLES:
        if index.has(role) or (attr == "dealer_fee" and index.tier_fee_columns):
            columns.append((attr, role.label))
    return columns


def _cell(cells: Sequence[str], where, keep_line_breaks: bool = False) -> str:
    idx = where.index if isinstance(where, Located) else where
    if idx is None or idx < 0 or idx >= len(cells):
        return ""
    return clean_cell(cells[idx], keep_line_breaks=keep_line_breaks)


def _observations(index: HeaderIndex, cells: Sequence[str]) -> List[Observation]:
    found: List[Observation] = []
    tier = normalize_tier(_cell(cells, index.get(ColumnRole.TIER)))
    term = normalize_term(_cell(cells, index.get(ColumnRole.TERM)))

    if tier and index.has(ColumnRole.RATE) and term:
        rate = _cell(cells, index.get(ColumnRole.RATE))
        if rate:
            found.append((tier, term, rate))

    if tier:
        for idx, header in index.term_columns:
            rate = _cell(cells, idx)
            if rate:
                found.append((tier, normalize_term(header), rate))

    if term:
        for idx, tier_no in index.tier_rate_columns:
            rate = _cell(cells, idx)
            if rate:
                found.append((normalize_tier(tier_no), term, rate))

    return found


def _group_key(index: HeaderIndex, cells: Sequence[str], default_group: str) -> str:
    for role in (ColumnRole.TABLE_GROUP, ColumnRole.PROGRAM_NAME):
        value = _cell(cells, index.get(role))
        if value:
            return value

    product = _cell(cells, index.get(ColumnRole.PRODUCT))
    years = _cell(cells, index.get(ColumnRole.MODEL_YEARS))
    if product or years:
        return " ".join(part for part in (product, years) if part)

    return default_group


def _eligibility_text(index: HeaderIndex, cells: Sequence[str]) -> str:
    if index.has(ColumnRole.ELIGIBILITY):
        return _cell(cells, index.get(ColumnRole.ELIGIBILITY), keep_line_breaks=True)

    product = _cell(cells, index.get(ColumnRole.PRODUCT))
    years = _cell(cells, index.get(ColumnRole.MODEL_YEARS))
    if product and years:
        return f"{product} ({years})"
    return product


def _capture_meta(index: HeaderIndex, cells: Sequence[str], group: RateGroup, tiers: Iterable[str]) -> None:
    tiers = list(dict.fromkeys(tiers))
    for role, attr in META_ROLES:
        value = _cell(cells, index.get(role))
        for tier in tiers:
            group.tier_meta(tier).offer(attr, value)

    for idx, tier_no in index.tier_fee_columns:
        tier = normalize_tier(tier_no)
        if tier in tiers:
            group.tier_meta(tier).offer("dealer_fee", _cell(cells, idx))


def build_pivot(
    index: HeaderIndex,
    rows: Iterable[Sequence[str]],
    options: Optional[PivotOptions] = None,
    default_group: str = "",
) -> List[RateGroup]:
    """Group ``rows`` and pivot each group into a tier x term matrix.

    Groups come back in the order their first row appeared. Groups left
    without tiers or terms (after the tier policy) are dropped.
    """
    options = options or PivotOptions()
    groups: Dict[str, RateGroup] = {}

    for cells in rows:
        if is_blank_row(cells):
            continue

        observations = _observations(index, cells)
        if not observations:
            continue

        key = _group_key(index, cells, default_group)
        group = groups.get(key)
        if group is None:
            group = groups[key] = RateGroup(name=key, meta_columns=metadata_columns(index))

        for tier, term, rate in observations:
            group.record(tier, term, rate)

        _capture_meta(index, cells, group, (tier for tier, _, _ in observations))

        eligibility = _eligibility_text(index, cells)
        if eligibility:
            group.add_eligibility(eligibility)

    return [group for group in groups.values() if group.finalize(options)]
