from typing import List, Optional


class RateSheetError(Exception):
    """Base class for failures reported back to the caller."""


class StructuralError(RateSheetError):
    """Raised when no known layout matches or required columns are absent."""

    def __init__(self, message: str, missing: Optional[List[str]] = None, header: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])
        self.header = list(header or [])


class TemplateMalformedError(RateSheetError):
    """Raised when a template lacks its splice markers or tokens."""


class UnsupportedUploadError(RateSheetError):
    """Raised for missing, mistyped or undecodable uploads."""


class SheetsUnavailableError(RateSheetError):
    """Raised when the Google Sheets integration is off or the fetch failed."""
