# Shared pytest fixtures
import csv
import io
from html.parser import HTMLParser
from pathlib import Path
from typing import Dict, List

import pytest

from backend.cells import frame_from_rows
from backend.config import Settings
from backend.logger import reset_logging


class _TableParser(HTMLParser):
    """Collects each rendered table with the heading and list that belong to it."""

    def __init__(self):
        super().__init__()
        self.tables: List[Dict] = []
        self._pending_name = ""
        self._in = None
        self._row = None
        self._text = []

    def handle_starttag(self, tag, attrs):
        if tag == "table":
            self.tables.append({"name": self._pending_name, "headers": [], "rows": [], "eligibility": []})
            self._pending_name = ""
        elif tag == "tr":
            self._row = []
        if tag in ("h2", "th", "td", "li"):
            self._in = tag
            self._text = []

    def handle_endtag(self, tag):
        if tag != self._in:
            if tag == "tr" and self._row and self.tables:
                self.tables[-1]["rows"].append(self._row)
                self._row = None
            return
        text = "".join(self._text)
        if tag == "h2":
            self._pending_name = text
        elif tag == "th":
            self.tables[-1]["headers"].append(text)
        elif tag == "td":
            self._row.append(text)
        elif tag == "li":
            self.tables[-1]["eligibility"].append(text)
        self._in = None

    def handle_data(self, data):
        if self._in:
            self._text.append(data)


@pytest.fixture()
def parse_tables():
    def parse(html: str) -> List[Dict]:
        parser = _TableParser()
        parser.feed(html)
        return parser.tables
    return parse


@pytest.fixture()
def make_frame():
    return frame_from_rows


@pytest.fixture()
def make_csv():
    def build(rows) -> bytes:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerows(rows)
        return buf.getvalue().encode("utf-8")
    return build


@pytest.fixture()
def promo_rows():
    return [
        ["Table Group", "Eligible Products/Models", "Tiers", "36M", "48M"],
        ["Group A", "Model X", "Tier 1", "4.99", "5.49"],
    ]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(export_dir=tmp_path / "exports")


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()
