import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[str]]


class RateSheetCache:
    """Holds the last rendered Sheets fragment and when it was produced.

    One instance lives on ``app.state`` and reaches handlers through a
    dependency. ``refresh()`` replaces both values together; readers in
    between see the previous pair untouched.
    """

    def __init__(self, loader: Loader):
        self._loader = loader
        self._html: Optional[str] = None
        self._last_refresh: Optional[datetime] = None

    def get(self) -> Optional[str]:
        return self._html

    def last_updated(self) -> Optional[datetime]:
        return self._last_refresh

    @property
    def is_empty(self) -> bool:
        return self._html is None

    async def refresh(self) -> str:
        """Reload through the loader. On failure the old fragment stays."""
        html = await self._loader()
        self._html, self._last_refresh = html, datetime.now(timezone.utc)
        logger.info("Rate sheet cache refreshed (%d characters)", len(html))
        return html
