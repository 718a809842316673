import html
from pathlib import Path
from typing import Optional

from backend.errors import TemplateMalformedError

# ===============================================================================
# SPLICE POINTS
# ===============================================================================

TABLES_START = "<!-- TABLES_START -->"
TABLES_END = "<!-- TABLES_END -->"
TABLES_TOKEN = "{{TABLES}}"
OEM_TOKEN = "{{OEM}}"


def load_template(path: Path) -> str:
    """Read a template document; a missing file counts as a malformed template."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateMalformedError(f"Template malformed: cannot read {path}: {e}") from e


def splice_markers(template: str, fragment: str) -> str:
    """Put ``fragment`` between the TABLES markers; everything else is kept byte-for-byte."""
    start = template.find(TABLES_START)
    end = template.find(TABLES_END)
    if start < 0 or end < 0:
        missing = TABLES_START if start < 0 else TABLES_END
        raise TemplateMalformedError(f"Template malformed: marker {missing} not found")
    if end < start:
        raise TemplateMalformedError("Template malformed: TABLES_END precedes TABLES_START")

    return template[:start + len(TABLES_START)] + fragment + template[end:]


def splice_placeholders(template: str, fragment: str, org_name: str) -> str:
    """Replace the first {{TABLES}} and {{OEM}} tokens."""
    if TABLES_TOKEN not in template:
        raise TemplateMalformedError(f"Template malformed: placeholder {TABLES_TOKEN} not found")
    document = template.replace(TABLES_TOKEN, fragment, 1)
    return document.replace(OEM_TOKEN, html.escape(org_name, quote=True), 1)


def apply_brand(document: str, default_brand: str, org_name: str) -> str:
    """Swap the template's default brand for the (escaped) organisation name."""
    if not default_brand or not org_name:
        return document
    return document.replace(default_brand, html.escape(org_name, quote=True))


class TemplateSplicer:
    """Splices rendered fragments into one deployment's template."""

    def __init__(self, style: str, template: str, default_brand: str, fallback_org_name: str = ""):
        if style not in ("markers", "placeholders"):
            raise ValueError(f"unknown splice style: {style!r}")
        self.style = style
        self.template = template
        self.default_brand = default_brand
        self.fallback_org_name = fallback_org_name or default_brand

    @classmethod
    def from_settings(cls, settings) -> "TemplateSplicer":
        return cls(
            style=settings.splice_style,
            template=load_template(settings.template_path),
            default_brand=settings.default_brand,
            fallback_org_name=settings.fallback_org_name,
        )

    def splice(self, fragment: str, org_name: Optional[str] = None) -> str:
        org = (org_name or "").strip() or self.fallback_org_name
        if self.style == "markers":
            document = splice_markers(self.template, fragment)
        else:
            document = splice_placeholders(self.template, fragment, org)
        return apply_brand(document, self.default_brand, org)
