import html
from typing import Any, List, Sequence

from backend.cells import clean_cell, is_blank_row
from backend.layouts import LayoutResult
from backend.pivot import RateGroup

# ===============================================================================
# PALETTE
# ===============================================================================

PRIMARY = "#231F20"
OVERLAY = "#70737C"
HIGHLIGHT = "#0096D7"
ALT = "#E4F0F7"

TABLE_STYLE = "width:100%; border-collapse:collapse; margin-bottom:30px;"
TH_STYLE = f"padding:10px; border:1px solid {OVERLAY}; background:{ALT}; text-align:left;"
TD_STYLE = f"padding:8px; border:1px solid {OVERLAY};"
TIER_STYLE = f"{TD_STYLE} font-weight:700; color:{PRIMARY};"

NO_DATA_MESSAGE = "No rate data found."
ELIGIBILITY_HEADING = "Eligible Products/Models"


def esc(value: Any) -> str:
    """Escape a literal for HTML text or attribute context."""
    return html.escape(clean_cell(value), quote=True)


def _header_cells(labels: Sequence[str]) -> str:
    return "".join(f'<th style="{TH_STYLE}">{esc(label)}</th>' for label in labels)


def _render_group(group: RateGroup) -> str:
    labels = ["Tiers"] + group.term_order + [label for _, label in group.meta_columns]

    parts = ['<section class="rate-group">']
    if group.name:
        parts.append(f'<h2 style="color:{PRIMARY}; margin-top:40px;">{esc(group.name)}</h2>')

    parts.append(f'<table class="rate-table" style="{TABLE_STYLE}">')
    parts.append(f"<thead><tr>{_header_cells(labels)}</tr></thead>")
    parts.append("<tbody>")
    for tier in group.tier_order:
        cells = [f'<td style="{TIER_STYLE}">{esc(tier)}</td>']
        cells += [f'<td style="{TD_STYLE}">{esc(group.rate(tier, term))}</td>' for term in group.term_order]
        meta = group.meta.get(tier)
        for attr, _ in group.meta_columns:
            value = getattr(meta, attr) if meta is not None else ""
            cells.append(f'<td style="{TD_STYLE}">{esc(value)}</td>')
        parts.append(f"<tr>{''.join(cells)}</tr>")
    parts.append("</tbody></table>")

    items = group.eligibility_items
    if items:
        parts.append(f'<h3 style="color:{HIGHLIGHT};">{esc(ELIGIBILITY_HEADING)}</h3>')
        parts.append('<ul class="eligibility">')
        parts.extend(f"<li>{esc(item)}</li>" for item in items)
        parts.append("</ul>")

    parts.append("</section>")
    return "\n".join(parts)


def render_groups(groups: Sequence[RateGroup]) -> str:
    """One table (plus eligibility list) per group."""
    if not groups:
        return render_no_data()
    return "\n".join(_render_group(group) for group in groups)


def render_raw_table(header: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Mirror the sheet as-is; blank rows are skipped."""
    body: List[str] = []
    for row in rows:
        if is_blank_row(row):
            continue
        cells = "".join(f'<td style="{TD_STYLE}">{esc(cell)}</td>' for cell in row)
        body.append(f"<tr>{cells}</tr>")

    if not body:
        return render_no_data()

    return "\n".join([
        f'<table class="rate-table raw" style="{TABLE_STYLE}">',
        f"<thead><tr>{_header_cells(header)}</tr></thead>",
        "<tbody>",
        *body,
        "</tbody></table>",
    ])


def render_no_data() -> str:
    return f'<p class="rate-sheet-empty" style="color:{OVERLAY};">{esc(NO_DATA_MESSAGE)}</p>'


def render_result(result: LayoutResult) -> str:
    """Render whatever a layout processor produced."""
    if result.is_raw:
        return render_raw_table(result.raw_header, result.raw_rows)
    return render_groups(result.groups)
