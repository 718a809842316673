import asyncio

import pytest

from backend.cache import RateSheetCache
from backend.errors import SheetsUnavailableError


def make_loader(*outcomes):
    pending = list(outcomes)

    async def load():
        outcome = pending.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return load


def test_starts_empty():
    cache = RateSheetCache(make_loader())
    assert cache.is_empty
    assert cache.get() is None
    assert cache.last_updated() is None


def test_refresh_stores_html_and_timestamp():
    cache = RateSheetCache(make_loader("<table>1</table>"))

    html = asyncio.run(cache.refresh())

    assert html == "<table>1</table>"
    assert cache.get() == "<table>1</table>"
    assert cache.last_updated() is not None
    assert cache.last_updated().tzinfo is not None


def test_failed_refresh_keeps_previous_state():
    cache = RateSheetCache(make_loader("<table>1</table>", SheetsUnavailableError("down")))
    asyncio.run(cache.refresh())
    stamp = cache.last_updated()

    with pytest.raises(SheetsUnavailableError):
        asyncio.run(cache.refresh())

    assert cache.get() == "<table>1</table>"
    assert cache.last_updated() == stamp


def test_refresh_replaces_previous_fragment():
    cache = RateSheetCache(make_loader("<table>1</table>", "<table>2</table>"))
    asyncio.run(cache.refresh())
    first = cache.last_updated()
    asyncio.run(cache.refresh())

    assert cache.get() == "<table>2</table>"
    assert cache.last_updated() >= first
