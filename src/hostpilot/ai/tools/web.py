"""Web resource tools that hand URLs to the operating system."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar
from urllib.parse import quote, urlparse

from .base import BaseTool, ToolContext, ToolFamily, ToolOutput
from .errors import ExecutionToolError, ValidationToolError

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_URL = "https://www.google.com/search?q={query}"
MAP_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query={query}"
MAP_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination={query}"
YOUTUBE_SEARCH_URL = "https://www.youtube.com/results?search_query={query}"

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def open_in_browser(url: str) -> bool:
    """Default URL opener backed by :mod:`webbrowser`."""
    return webbrowser.open(url, new=2)


def _encode(text: str) -> str:
    return quote(text.strip(), safe="")


def _require_text(params: dict[str, Any], key: str) -> None:
    if not str(params.get(key, "")).strip():
        raise ValidationToolError(message=f"'{key}' must not be empty", parameter=key)


class _UrlTool(BaseTool):
    """Shared handoff logic: build a URL, pass it to the opener, report the effect."""

    family: ClassVar[ToolFamily] = ToolFamily.WEB

    @abstractmethod
    def build_url(self, params: dict[str, Any]) -> str:
        """The URL to hand to the operating system for ``params``."""

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        url = self.build_url(params)
        try:
            accepted = await asyncio.to_thread(context.url_opener, url)
        except Exception as exc:
            raise ExecutionToolError(message=f"Failed to open URL: {exc}", details={"url": url}) from exc
        if accepted is False:
            raise ExecutionToolError(message="The operating system refused to open the URL", details={"url": url})

        LOGGER.info("Opened URL for %s", self.name)
        return ToolOutput(
            text=f"Opened {url}",
            data={"url": url},
            side_effect=f"opened URL {url}",
        )


@dataclass
class BrowserOpenTool(_UrlTool):
    """Open an http(s) URL in the default browser."""

    name: ClassVar[str] = "browser_open"

    def validate(self, params: dict[str, Any]) -> None:
        _require_text(params, "url")
        parsed = urlparse(str(params["url"]).strip())
        if parsed.scheme.lower() not in _ALLOWED_SCHEMES or not parsed.netloc:
            raise ValidationToolError(
                message="Only http and https URLs can be opened",
                parameter="url",
                expected="http(s) URL",
            )

    def build_url(self, params: dict[str, Any]) -> str:
        return str(params["url"]).strip()


@dataclass
class WebSearchTool(_UrlTool):
    name: ClassVar[str] = "web_search"

    def validate(self, params: dict[str, Any]) -> None:
        _require_text(params, "query")

    def build_url(self, params: dict[str, Any]) -> str:
        return WEB_SEARCH_URL.format(query=_encode(params["query"]))


@dataclass
class MapOpenTool(_UrlTool):
    """Open a map search, or directions when ``mode`` is ``directions``."""

    name: ClassVar[str] = "map_open"

    def validate(self, params: dict[str, Any]) -> None:
        _require_text(params, "location")

    def build_url(self, params: dict[str, Any]) -> str:
        template = MAP_DIRECTIONS_URL if params.get("mode") == "directions" else MAP_SEARCH_URL
        return template.format(query=_encode(params["location"]))


@dataclass
class YoutubeSearchTool(_UrlTool):
    name: ClassVar[str] = "youtube_search"

    def validate(self, params: dict[str, Any]) -> None:
        _require_text(params, "query")

    def build_url(self, params: dict[str, Any]) -> str:
        return YOUTUBE_SEARCH_URL.format(query=_encode(params["query"]))


__all__ = [
    "BrowserOpenTool",
    "MapOpenTool",
    "WebSearchTool",
    "YoutubeSearchTool",
    "open_in_browser",
]
