"""
Column discovery for loosely structured rate sheets.

Headers drift from month to month ("Eligible Models", "Eligibility List",
"Eligible Products/Models"...), so columns are found by case-insensitive
substring matching instead of exact names. Because a loose keyword such as
"fee" or "product" also matches more specific headers, roles are resolved in
the fixed order of ROLE_PRIORITY and a column claimed by one role is never
offered to a later one.
"""

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Sequence, Tuple, Union

from backend.cells import clean_cell


class ColumnRole(Enum):
    TABLE_GROUP = "Table Group"
    PROGRAM_NAME = "Program Name"
    MODEL_YEARS = "Eligible Model Years"
    ELIGIBILITY = "Eligible Products/Models"
    DEALER_FEE = "Dealer Fee"
    DOWN_PAYMENT = "Down Payment"
    FRONT_END_CAP = "Front-End Cap"
    TIER = "Tiers"
    RATE = "Interest Rate"
    TERM = "Repayment Term"
    PRODUCT = "Product"

    @property
    def label(self) -> str:
        return self.value


# ===============================================================================
# MATCH PATTERNS
# ===============================================================================

@dataclass(frozen=True)
class Keyword:
    """Header contains ``keyword``."""
    keyword: str


@dataclass(frozen=True)
class AllKeywords:
    """Header contains every one of ``keywords``."""
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class AnyKeyword:
    """Keywords tried in order; the first keyword matching any column wins."""
    keywords: Tuple[str, ...]


Pattern = Union[Keyword, AllKeywords, AnyKeyword]


@dataclass(frozen=True)
class Located:
    """Outcome of a lookup: a column position, or absent."""
    index: int = -1
    header: str = ""

    @property
    def present(self) -> bool:
        return self.index >= 0


ABSENT = Located()


def _lowered(header: Sequence[str]) -> List[str]:
    return [clean_cell(h).lower() for h in header]


def _first_containing(lowered: List[str], keywords: Iterable[str], exclude: FrozenSet[int]) -> int:
    keywords = [k.lower() for k in keywords]
    for idx, text in enumerate(lowered):
        if idx in exclude or not text:
            continue
        if all(k in text for k in keywords):
            return idx
    return -1


def locate(header: Sequence[str], pattern: Pattern, exclude: Iterable[int] = ()) -> Located:
    """Find the column satisfying ``pattern``, skipping ``exclude`` positions."""
    lowered = _lowered(header)
    exclude = frozenset(exclude)

    if isinstance(pattern, Keyword):
        idx = _first_containing(lowered, [pattern.keyword], exclude)
    elif isinstance(pattern, AllKeywords):
        idx = _first_containing(lowered, pattern.keywords, exclude)
    elif isinstance(pattern, AnyKeyword):
        idx = -1
        for keyword in pattern.keywords:
            idx = _first_containing(lowered, [keyword], exclude)
            if idx >= 0:
                break
    else:
        raise TypeError(f"unsupported pattern: {pattern!r}")

    if idx < 0:
        return ABSENT
    return Located(index=idx, header=clean_cell(header[idx]))


def locate_all(header: Sequence[str], pattern: AllKeywords, exclude: Iterable[int] = ()) -> List[Located]:
    """Every column containing all keywords of ``pattern``, left to right."""
    lowered = _lowered(header)
    exclude = frozenset(exclude)
    keywords = [k.lower() for k in pattern.keywords]
    return [
        Located(index=idx, header=clean_cell(header[idx]))
        for idx, text in enumerate(lowered)
        if idx not in exclude and text and all(k in text for k in keywords)
    ]


# ===============================================================================
# ROLE PRIORITY
# ===============================================================================

# Most specific first. Grouping columns go before anything that could
# swallow them, eligibility before "product" (the eligibility header usually
# reads "Eligible Products/Models"), and fee/payment/cap before the broad
# tier/rate/term keywords.
ROLE_PRIORITY: Tuple[Tuple[ColumnRole, Pattern], ...] = (
    (ColumnRole.TABLE_GROUP, Keyword("table group")),
    (ColumnRole.PROGRAM_NAME, AnyKeyword(("program name stub", "program name"))),
    (ColumnRole.MODEL_YEARS, AnyKeyword(("eligible model years", "model year"))),
    (ColumnRole.ELIGIBILITY, AnyKeyword(("eligibility list", "eligible products/models", "eligible models"))),
    (ColumnRole.DEALER_FEE, Keyword("dealer fee")),
    (ColumnRole.DOWN_PAYMENT, Keyword("down payment")),
    (ColumnRole.FRONT_END_CAP, AnyKeyword(("front-end cap", "front end cap"))),
    (ColumnRole.TIER, Keyword("tier")),
    (ColumnRole.RATE, AnyKeyword(("interest rate", "promo rate", "rate", "apr"))),
    (ColumnRole.TERM, AnyKeyword(("repayment term", "term"))),
    (ColumnRole.PRODUCT, Keyword("product")),
)

# "Promo Rate RT 1", "Dealer Fee RT 1.12": one column per tier
TIER_RATE_PATTERN = AllKeywords(("rate", "rt"))
TIER_DEALER_FEE_PATTERN = AllKeywords(("dealer fee", "rt"))

_TIER_SUFFIX = re.compile(r"\brt\s*(\d+(?:\.\d+)?)\b", re.IGNORECASE)
TERM_HEADER = re.compile(r"^\d{1,3}(?:\.\d+)?\s*(?:m|mo|mos|month|months)?\.?$", re.IGNORECASE)


def tier_from_header(text: str) -> str:
    """'Promo Rate RT 1.12' -> '1.12'; '' when the header names no tier."""
    match = _TIER_SUFFIX.search(text or "")
    return match.group(1) if match else ""


@dataclass(frozen=True)
class HeaderIndex:
    """Resolved column positions for one header row. Immutable once built."""
    header: Tuple[str, ...]
    roles: Mapping[ColumnRole, Located]
    term_columns: Tuple[Tuple[int, str], ...] = ()
    tier_rate_columns: Tuple[Tuple[int, str], ...] = ()
    tier_fee_columns: Tuple[Tuple[int, str], ...] = ()

    def get(self, role: ColumnRole) -> Located:
        return self.roles.get(role, ABSENT)

    def has(self, role: ColumnRole) -> bool:
        return self.get(role).present

    @property
    def has_rates(self) -> bool:
        """Whether any of the three rate shapes is resolvable."""
        long_form = self.has(ColumnRole.TIER) and self.has(ColumnRole.RATE) and self.has(ColumnRole.TERM)
        term_wide = self.has(ColumnRole.TIER) and bool(self.term_columns)
        tier_wide = self.has(ColumnRole.TERM) and bool(self.tier_rate_columns)
        return long_form or term_wide or tier_wide

    def missing(self, roles: Iterable[ColumnRole]) -> List[str]:
        return [role.label for role in roles if not self.has(role)]


def build_header_index(header: Sequence[str]) -> HeaderIndex:
    """Resolve every role against ``header`` in ROLE_PRIORITY order."""
    header = tuple(clean_cell(h) for h in header)
    claimed = set()

    def per_tier(pattern: AllKeywords) -> Tuple[Tuple[int, str], ...]:
        found = []
        for hit in locate_all(header, pattern, exclude=claimed):
            tier = tier_from_header(hit.header)
            if tier:
                found.append((hit.index, tier))
                claimed.add(hit.index)
        return tuple(found)

    tier_fee_columns = per_tier(TIER_DEALER_FEE_PATTERN)
    tier_rate_columns = per_tier(TIER_RATE_PATTERN)

    roles = {}
    for role, pattern in ROLE_PRIORITY:
        found = locate(header, pattern, exclude=claimed)
        roles[role] = found
        if found.present:
            claimed.add(found.index)

    term_columns = tuple(
        (idx, text) for idx, text in enumerate(header)
        if idx not in claimed and TERM_HEADER.match(text)
    )

    return HeaderIndex(
        header=header,
        roles=MappingProxyType(roles),
        term_columns=term_columns,
        tier_rate_columns=tier_rate_columns,
        tier_fee_columns=tier_fee_columns,
    )
