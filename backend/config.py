import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

"""Service configuration.

All settings come from environment variables; a ``.env`` file in the working
directory is loaded first when present. Nothing here is re-read per request:
``load_settings()`` runs once when the app is created.
"""

TEMPLATE_DIR = Path(__file__).parent / "templates"

SPLICE_STYLES = ("markers", "placeholders")

DEFAULT_TEMPLATES = {
    "markers": TEMPLATE_DIR / "rate_sheet.html",
    "placeholders": TEMPLATE_DIR / "rate_sheet_tokens.html",
}

DEFAULT_TIER_ORDER = ("Tier 1", "Tier 1.12", "Tier 2", "Tier 2.1", "Tier 2.2")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Settings:
    default_brand: str = "OEM Partner"
    fallback_org_name: str = "Unknown OEM"
    splice_style: str = "markers"
    template_path: Path = DEFAULT_TEMPLATES["markers"]
    tier_order: Tuple[str, ...] = DEFAULT_TIER_ORDER
    drop_unknown_tiers: bool = False
    cors_origins: Tuple[str, ...] = ("*",)
    google_api_key: str = ""
    sheet_id: str = ""
    sheet_range: str = "Sheet1"
    export_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 10000

    @property
    def sheets_enabled(self) -> bool:
        return bool(self.sheet_id)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_list(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from ``env`` (defaults to os.environ after loading .env)."""
    if env is None:
        load_dotenv()
        env = os.environ

    style = env.get("RATESHEET_SPLICE_STYLE", "markers").strip().lower()
    if style not in SPLICE_STYLES:
        raise ConfigError(f"RATESHEET_SPLICE_STYLE must be one of {SPLICE_STYLES}, got {style!r}")

    template = env.get("RATESHEET_TEMPLATE", "").strip()
    template_path = Path(template) if template else DEFAULT_TEMPLATES[style]

    raw_port = env.get("PORT", "10000").strip()
    try:
        port = int(raw_port)
    except ValueError as e:
        raise ConfigError(f"PORT must be an integer, got {raw_port!r}") from e

    tier_order = _parse_list(env.get("RATESHEET_TIER_ORDER", "")) or DEFAULT_TIER_ORDER
    cors_origins = _parse_list(env.get("RATESHEET_CORS_ORIGINS", "")) or ("*",)

    export_dir = env.get("RATESHEET_EXPORT_DIR", "").strip()

    return Settings(
        default_brand=env.get("RATESHEET_DEFAULT_BRAND", "OEM Partner").strip() or "OEM Partner",
        fallback_org_name=env.get("RATESHEET_FALLBACK_ORG", "Unknown OEM").strip() or "Unknown OEM",
        splice_style=style,
        template_path=template_path,
        tier_order=tier_order,
        drop_unknown_tiers=_parse_bool(
            "RATESHEET_DROP_UNKNOWN_TIERS", env.get("RATESHEET_DROP_UNKNOWN_TIERS", "false")
        ),
        cors_origins=cors_origins,
        google_api_key=(env.get("GOOGLE_SHEETS_API_KEY") or env.get("GOOGLE_API_KEY") or "").strip(),
        sheet_id=env.get("RATESHEET_SHEET_ID", "").strip(),
        sheet_range=env.get("RATESHEET_SHEET_RANGE", "Sheet1").strip() or "Sheet1",
        export_dir=Path(export_dir) if export_dir else Path(tempfile.gettempdir()),
        log_level=env.get("RATESHEET_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        host=env.get("RATESHEET_HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=port,
    )
