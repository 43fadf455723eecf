"""Generated resource classes for the urlshortener v1 API."""

from __future__ import annotations

import functools


class Url:
    """A shortened URL."""

    kind: str = "urlshortener#url"
    id: str | None = None
    long_url = None
    projection = "FULL"

    def __init__(self, data: dict) -> None:
        self._data = data

    @property
    def status(self) -> str:
        return self._data.get("status", "OK")

    @status.setter
    def status(self, value: str) -> None:
        self._data["status"] = value

    @functools.cached_property
    def analytics(self) -> AnalyticsSummary:
        return AnalyticsSummary(self._data.get("analytics", {}))

    async def refresh(self) -> None:
        pass

    class Projection:
        FULL = "FULL"
        ANALYTICS_CLICKS = "ANALYTICS_CLICKS"


class AnalyticsSummary:
    """Click counts of a shortened URL."""

    def __init__(self, data: dict) -> None:
        self._data = data

    @property
    def short_url_clicks(self) -> int:
        return int(self._data.get("shortUrlClicks", 0))
