from __future__ import annotations

import asyncio
import json
import math
import re
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger
from tavily import AsyncTavilyClient

from morphic.config import settings
from morphic.errors import SearchTimeoutError
from morphic.tools.providers.base import (
    BaseSearchProvider,
    SearchResultImage,
    SearchResultItem,
    SearchResults,
)
from morphic.utils.web_utils import sanitize_url

MAX_MERGED_IMAGES = 10
MIN_QUERY_LENGTH = 5


@dataclass
class _CacheEntry:
    data: SearchResults
    timestamp: float


class TavilySearchProvider(BaseSearchProvider):
    """Tavily search with a TTL cache, in-flight deduplication and a per-call timeout.

    The cache and pending-request map belong to this instance only. Lookup and
    pending registration happen before the first ``await``, so two concurrent
    calls with the same key never both reach the network.
    """

    name = "tavily"

    def __init__(
        self,
        *,
        cache_ttl: float | None = None,
        max_cache_size: int | None = None,
        request_timeout: float | None = None,
    ):
        self.cache_ttl = settings.search_cache_ttl_seconds if cache_ttl is None else cache_ttl
        self.max_cache_size = (
            settings.search_cache_max_size if max_cache_size is None else max_cache_size
        )
        self.request_timeout = (
            settings.search_timeout_seconds if request_timeout is None else request_timeout
        )
        self._cache: dict[str, _CacheEntry] = {}
        self._pending: dict[str, asyncio.Future[SearchResults]] = {}

    async def search(
        self,
        query: str,
        max_results: int = 10,
        search_depth: str = "basic",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        **options: Any,
    ) -> SearchResults:
        include_domains = include_domains or []
        exclude_domains = exclude_domains or []
        cache_key = self._cache_key(query, max_results, search_depth, include_domains, exclude_domains)

        cached = self._get_from_cache(cache_key)
        if cached is not None:
            logger.debug(f"Tavily cache hit for '{query}'")
            return cached

        pending = self._pending.get(cache_key)
        if pending is not None:
            logger.debug(f"Joining in-flight Tavily request for '{query}'")
            return await asyncio.shield(pending)

        request = asyncio.ensure_future(
            self._execute_search(
                query=query,
                max_results=max_results,
                search_depth=search_depth,
                include_domains=include_domains,
                exclude_domains=exclude_domains,
            )
        )
        self._pending[cache_key] = request
        request.add_done_callback(lambda done: self._settle(cache_key, done))

        # Shared by every caller with this key; cancelling a caller stops at the shield.
        return await asyncio.shield(request)

    async def deep_search(
        self,
        query: str,
        *,
        max_results: int = 10,
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        include_raw_content: bool = False,
    ) -> SearchResults:
        """Run basic and advanced depth searches concurrently and merge them."""
        half = math.ceil(max_results / 2)
        basic, advanced = await asyncio.gather(
            self._execute_search(
                query=query,
                max_results=half,
                search_depth="basic",
                include_domains=include_domains or [],
                exclude_domains=exclude_domains or [],
                include_raw_content=include_raw_content,
            ),
            self._execute_search(
                query=query,
                max_results=half,
                search_depth="advanced",
                include_domains=include_domains or [],
                exclude_domains=exclude_domains or [],
                include_raw_content=include_raw_content,
            ),
        )
        return self.merge_results([basic, advanced], max_results)

    async def batch_search(
        self,
        queries: list[str],
        *,
        max_results_per_query: int = 10,
        search_depth: str = "basic",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
    ) -> dict[str, SearchResults]:
        results = await asyncio.gather(
            *(
                self.search(
                    query,
                    max_results_per_query,
                    search_depth,
                    include_domains,
                    exclude_domains,
                )
                for query in queries
            )
        )
        return dict(zip(queries, results))

    async def contextual_search(
        self,
        query: str,
        *,
        max_results: int = 10,
        search_depth: str = "advanced",
        expand_query: bool = True,
    ) -> SearchResults:
        """Search a few phrasings of the query and merge the results."""
        if not expand_query:
            return await self.search(query, max_results, search_depth)

        variations = self.generate_query_variations(query)[:3]
        results = await asyncio.gather(
            *(
                self._execute_search(
                    query=variation,
                    max_results=math.ceil(max_results / 2),
                    search_depth=search_depth,
                )
                for variation in variations
            )
        )
        return self.merge_results(list(results), max_results)

    async def _execute_search(
        self,
        *,
        query: str,
        max_results: int = 10,
        search_depth: str = "basic",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        include_raw_content: bool = False,
        topic: str = "general",
    ) -> SearchResults:
        self.validate_api_key(settings.tavily_api_key, "TAVILY")

        # Tavily rejects queries shorter than five characters.
        filled_query = query.ljust(MIN_QUERY_LENGTH)

        kwargs: dict[str, Any] = {
            "query": filled_query,
            "max_results": max(max_results, 5),
            "search_depth": search_depth,
            "topic": topic,
            "include_images": True,
            "include_image_descriptions": True,
            "include_answer": True,
            "include_raw_content": include_raw_content,
        }
        if include_domains:
            kwargs["include_domains"] = include_domains
        if exclude_domains:
            kwargs["exclude_domains"] = exclude_domains

        client = AsyncTavilyClient(api_key=settings.tavily_api_key)
        try:
            data = await asyncio.wait_for(client.search(**kwargs), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise SearchTimeoutError("Search request timed out") from None

        return self.process_results(data, query=query)

    @staticmethod
    def process_results(data: dict[str, Any], *, query: str = "") -> SearchResults:
        images: list[SearchResultImage] = []
        for item in data.get("images") or []:
            if isinstance(item, str):
                image = SearchResultImage(url=sanitize_url(item))
            else:
                image = SearchResultImage(
                    url=sanitize_url(item.get("url", "")),
                    description=item.get("description") or "",
                )
            if image.url:
                images.append(image)

        results = [
            SearchResultItem(
                title=r.get("title", ""),
                url=sanitize_url(r.get("url", "")),
                content=r.get("content", ""),
                score=r.get("score"),
            )
            for r in data.get("results") or []
        ]
        return SearchResults(
            query=data.get("query") or query,
            results=results,
            images=images,
            answer=data.get("answer"),
            number_of_results=len(results),
        )

    @staticmethod
    def merge_results(results: list[SearchResults], max_results: int | None = None) -> SearchResults:
        """Merge result sets: dedupe by URL, rank by score, cap results and images."""
        limit = max_results or 20

        if not results:
            return SearchResults()
        if len(results) == 1:
            return results[0]

        seen_urls: set[str] = set()
        merged: list[SearchResultItem] = []
        for result in results:
            for item in result.results:
                if item.url not in seen_urls:
                    seen_urls.add(item.url)
                    merged.append(item)

        merged.sort(key=lambda item: item.score or 0, reverse=True)
        limited = merged[:limit]

        seen_images: set[str] = set()
        images: list[SearchResultImage] = []
        for result in results:
            for image in result.images:
                if image.url not in seen_images:
                    seen_images.add(image.url)
                    images.append(image)

        answer = next((r.answer for r in results if r.answer), None)

        return SearchResults(
            query=results[0].query,
            results=limited,
            images=images[:MAX_MERGED_IMAGES],
            answer=answer,
            number_of_results=len(limited),
        )

    @staticmethod
    def generate_query_variations(query: str) -> list[str]:
        variations = [query]
        if '"' not in query:
            variations.append(f'"{query}"')
        if not re.match(r"^(what|how|why|when|where|who)", query.lower()):
            variations.append(f"what is {query}")
            variations.append(f"how to {query}")
        return variations

    @staticmethod
    def _cache_key(
        query: str,
        max_results: int,
        search_depth: str,
        include_domains: list[str],
        exclude_domains: list[str],
    ) -> str:
        return json.dumps(
            {
                "query": query.lower().strip(),
                "max_results": max_results,
                "search_depth": search_depth,
                "include_domains": sorted(include_domains),
                "exclude_domains": sorted(exclude_domains),
            },
            sort_keys=True,
        )

    def _get_from_cache(self, key: str) -> SearchResults | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if time.monotonic() - entry.timestamp > self.cache_ttl:
            del self._cache[key]
            return None
        return entry.data

    def _set_cache(self, key: str, data: SearchResults) -> None:
        # Evict the earliest-inserted entry once full.
        if key not in self._cache and len(self._cache) >= self.max_cache_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]
        self._cache[key] = _CacheEntry(data=data, timestamp=time.monotonic())

    def _settle(self, key: str, request: asyncio.Future[SearchResults]) -> None:
        if self._pending.get(key) is request:
            del self._pending[key]
        if request.cancelled() or request.exception() is not None:
            return
        self._set_cache(key, request.result())

    def clear_cache(self) -> None:
        self._cache.clear()
        self._pending.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "max_size": self.max_cache_size,
            "ttl": self.cache_ttl,
            "pending_requests": len(self._pending),
        }
