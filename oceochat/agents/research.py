"""Web reference lookup for research-mode queries."""

import logging
import re
from typing import Any

import httpx

from oceochat.config import Settings, get_settings
from oceochat.data.schema import Reference

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")
_MAX_QUERY_CHARS = 300


class ResearchClient:
    """Collects a handful of citable references for a query.

    Uses SerpAPI when a key is configured, otherwise the DuckDuckGo instant
    answer API. Lookup failures yield an empty list; references are optional.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings | None = None,
        max_results: int = 3,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._max_results = max_results

    async def find_references(self, query: str) -> list[Reference]:
        q = query.strip()[:_MAX_QUERY_CHARS]
        if not q:
            return []
        try:
            if self._settings.serpapi_key:
                results = await self._search_serpapi(q)
            else:
                results = await self._search_duckduckgo(q)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("Reference search failed: %s", e)
            return []

        references = [
            Reference(index=i + 1, title=r["title"], url=r["url"], snippet=r.get("snippet", ""))
            for i, r in enumerate(results[: self._max_results])
        ]
        logger.info("Found %d references for research query", len(references))
        return references

    async def _search_serpapi(self, q: str) -> list[dict[str, Any]]:
        response = await self._client.get(
            "https://serpapi.com/search.json",
            params={"engine": "google", "q": q, "api_key": self._settings.serpapi_key, "num": 10, "hl": "en"},
        )
        response.raise_for_status()
        return [
            {"title": item.get("title", "Result"), "url": item["link"], "snippet": item.get("snippet", "")}
            for item in response.json().get("organic_results", [])
            if item.get("link")
        ]

    async def _search_duckduckgo(self, q: str) -> list[dict[str, Any]]:
        response = await self._client.get(
            self._settings.search_api,
            params={"q": q, "format": "json", "no_html": 1, "skip_disambig": 1},
        )
        response.raise_for_status()
        results = []
        for topic in response.json().get("RelatedTopics", []):
            # Disambiguation groups nest their results one level down.
            for item in topic.get("Topics", [topic]):
                url = item.get("FirstURL")
                if not url:
                    continue
                text = item.get("Text") or _TAG.sub("", item.get("Result", "")) or "Result"
                results.append({"title": text[:120], "url": url, "snippet": text})
        return results
