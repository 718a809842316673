"""
Rate Sheet Builder API
======================
Turns an uploaded financing rate CSV (or a Google Sheets tab) into an HTML
rate sheet for embedding in a marketing page.

Usage:
    uvicorn backend.main:app --reload

Features:
- Upload a CSV/XLSX and get back the spliced HTML document (or just the tables)
- Automatic layout detection (promotional, standard, generic tabular)
- Optional Google Sheets source with a cached rendered fragment
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse
from starlette.background import BackgroundTask

from backend import __version__
from backend.cache import Loader, RateSheetCache
from backend.config import Settings, load_settings
from backend.errors import (
    RateSheetError,
    SheetsUnavailableError,
    StructuralError,
    TemplateMalformedError,
    UnsupportedUploadError,
)
from backend.layouts import LayoutDetector, LayoutResult
from backend.logger import setup_logging
from backend.pipeline import build_rate_sheet, frame_from_values, list_worksheets, read_upload, render_fragment
from backend.pivot import PivotOptions
from backend.render import render_result
from backend.sheets import GoogleSheetsClient
from backend.template import TemplateSplicer

logger = logging.getLogger(__name__)

SERVICE_NAME = "Rate Sheet Builder API"

# ===============================================================================
# HELPERS
# ===============================================================================

def pivot_options(settings: Settings) -> PivotOptions:
    return PivotOptions(tier_order=settings.tier_order, drop_unknown_tiers=settings.drop_unknown_tiers)


def http_error(e: RateSheetError) -> HTTPException:
    """Map a service error onto the status the caller should see"""
    if isinstance(e, StructuralError):
        return HTTPException(
            status_code=422,
            detail={"error": str(e), "missing": e.missing, "header": e.header},
        )
    if isinstance(e, TemplateMalformedError):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, UnsupportedUploadError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, SheetsUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def build_sheet_loader(settings: Settings, client: GoogleSheetsClient) -> Loader:
    """Loader for the cache: fetch the configured tab and render its tables"""

    async def load() -> str:
        if not settings.sheets_enabled:
            raise SheetsUnavailableError("Google Sheets source is not configured (set RATESHEET_SHEET_ID).")
        values = await client.fetch_values(settings.sheet_id, settings.sheet_range)
        return render_fragment(frame_from_values(values), pivot_options(settings), sheet_name=settings.sheet_range)

    return load


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_cache(request: Request) -> RateSheetCache:
    return request.app.state.rate_cache


async def _process_upload(
    csv_file: Optional[UploadFile],
    sheet_name: Optional[str],
    settings: Settings,
) -> Tuple[LayoutResult, str]:
    if csv_file is None or not csv_file.filename:
        raise UnsupportedUploadError("No CSV uploaded.")

    content = await csv_file.read()
    logger.info("Upload %s (%d bytes)", csv_file.filename, len(content))

    df = read_upload(content, csv_file.filename, sheet_name)
    result = build_rate_sheet(df, pivot_options(settings), sheet_name=sheet_name or csv_file.filename)
    return result, render_result(result)


def _document(settings: Settings, fragment: str, oem_name: Optional[str]) -> str:
    return TemplateSplicer.from_settings(settings).splice(fragment, oem_name)


# ===============================================================================
# APP FACTORY
# ===============================================================================

def create_app(settings: Optional[Settings] = None, sheets_client: Optional[GoogleSheetsClient] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    sheets = sheets_client or GoogleSheetsClient(settings.google_api_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await sheets.aclose()

    app = FastAPI(title=SERVICE_NAME, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.sheets = sheets
    app.state.rate_cache = RateSheetCache(build_sheet_loader(settings, sheets))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===========================================================================
    # API ENDPOINTS
    # ===========================================================================

    @app.get("/")
    async def root():
        return {
            "message": SERVICE_NAME,
            "version": __version__,
            "layouts_supported": [p.get_pattern_name() for p in LayoutDetector.PROCESSORS],
            "sheets_enabled": settings.sheets_enabled,
        }

    @app.post("/upload")
    async def upload_file(
        csvFile: Optional[UploadFile] = File(None),
        oemName: Optional[str] = Form(None),
        sheetName: Optional[str] = Form(None),
        settings: Settings = Depends(get_settings),
    ):
        """Upload a rate CSV and return the full HTML rate sheet"""
        try:
            result, fragment = await _process_upload(csvFile, sheetName, settings)
            document = _document(settings, fragment, oemName)
        except RateSheetError as e:
            logger.warning("Upload rejected: %s", e)
            raise http_error(e) from e

        return {
            "success": True,
            "html": document,
            "format": result.format.value,
            "pattern": result.pattern,
            "groups": [group.name for group in result.groups],
        }

    @app.post("/fragment", response_class=HTMLResponse)
    async def upload_fragment(
        csvFile: Optional[UploadFile] = File(None),
        sheetName: Optional[str] = Form(None),
        settings: Settings = Depends(get_settings),
    ):
        """Upload a rate CSV and return only the rendered tables"""
        try:
            _, fragment = await _process_upload(csvFile, sheetName, settings)
        except RateSheetError as e:
            logger.warning("Upload rejected: %s", e)
            raise http_error(e) from e
        return HTMLResponse(fragment)

    @app.post("/worksheets")
    async def worksheets(csvFile: Optional[UploadFile] = File(None)):
        """List the worksheets of an uploaded workbook"""
        try:
            if csvFile is None or not csvFile.filename:
                raise UnsupportedUploadError("No file uploaded.")
            sheets_found = list_worksheets(await csvFile.read(), csvFile.filename)
        except RateSheetError as e:
            raise http_error(e) from e

        return {
            "filename": csvFile.filename,
            "sheets": sheets_found,
            "message": f"Found {len(sheets_found)} worksheet(s).",
        }

    @app.post("/export")
    async def export_document(
        csvFile: Optional[UploadFile] = File(None),
        oemName: Optional[str] = Form(None),
        sheetName: Optional[str] = Form(None),
        settings: Settings = Depends(get_settings),
    ):
        """Render the rate sheet and hand it back as a downloadable file"""
        try:
            _, fragment = await _process_upload(csvFile, sheetName, settings)
            document = _document(settings, fragment, oemName)
        except RateSheetError as e:
            raise http_error(e) from e

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"Rate_Sheet_{timestamp}.html"
        export_dir = Path(settings.export_dir)
        export_dir.mkdir(parents=True, exist_ok=True)
        output_path = export_dir / filename
        output_path.write_text(document, encoding="utf-8")
        logger.info("Exported rate sheet to %s", output_path)

        # one-shot download: the file is removed once sent
        return FileResponse(
            path=str(output_path),
            filename=filename,
            media_type="text/html",
            background=BackgroundTask(output_path.unlink, missing_ok=True),
        )

    @app.get("/rates", response_class=HTMLResponse)
    async def cached_rates(cache: RateSheetCache = Depends(get_rate_cache)):
        """Rate tables from the Google Sheets source, refreshed when nothing is cached"""
        try:
            if cache.is_empty:
                await cache.refresh()
        except RateSheetError as e:
            raise http_error(e) from e
        return HTMLResponse(cache.get() or "")

    @app.post("/rates/refresh")
    async def refresh_rates(cache: RateSheetCache = Depends(get_rate_cache)):
        try:
            await cache.refresh()
        except RateSheetError as e:
            logger.error("Rate sheet refresh failed: %s", e)
            raise http_error(e) from e
        return {"success": True, "last_updated": cache.last_updated().isoformat()}

    @app.get("/rates/status")
    async def rates_status(cache: RateSheetCache = Depends(get_rate_cache)):
        last = cache.last_updated()
        return {"cached": not cache.is_empty, "last_updated": last.isoformat() if last else None}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    _settings = app.state.settings
    logger.info("Starting %s on http://%s:%d", SERVICE_NAME, _settings.host, _settings.port)
    for processor in LayoutDetector.PROCESSORS:
        logger.info("  layout: %s", processor.get_pattern_name())
    uvicorn.run(app, host=_settings.host, port=_settings.port)
