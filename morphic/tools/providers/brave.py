from __future__ import annotations

from typing import Any

import httpx

from morphic.config import settings
from morphic.tools.providers.base import (
    BaseSearchProvider,
    SearchResultImage,
    SearchResultItem,
    SearchResults,
)
from morphic.utils.web_utils import sanitize_url

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

# content_types value -> Brave result_filter section
RESULT_SECTIONS = {
    "web": "web",
    "video": "videos",
    "news": "news",
}


class BraveSearchProvider(BaseSearchProvider):
    """Brave web search normalized to ``SearchResults``."""

    name = "brave"

    async def search(
        self,
        query: str,
        max_results: int = 10,
        search_depth: str = "basic",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        **options: Any,
    ) -> SearchResults:
        self.validate_api_key(settings.brave_api_key, "BRAVE")

        content_types = options.get("content_types") or ["web"]
        sections = [RESULT_SECTIONS[t] for t in content_types if t in RESULT_SECTIONS] or ["web"]

        filled_query = query
        if include_domains:
            filled_query += " " + " OR ".join(f"site:{d}" for d in include_domains)
        if exclude_domains:
            filled_query += " " + " ".join(f"-site:{d}" for d in exclude_domains)

        params: dict[str, Any] = {
            "q": filled_query,
            "count": min(max_results, 20),
            "result_filter": ",".join(sections),
        }

        async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": settings.brave_api_key,
                },
            )
            response.raise_for_status()
            payload = response.json()

        raw_results: list[dict[str, Any]] = []
        for section in sections:
            raw_results.extend(payload.get(section, {}).get("results", []) or [])

        total = max(len(raw_results), 1)
        results: list[SearchResultItem] = []
        images: list[SearchResultImage] = []
        for idx, item in enumerate(raw_results[:max_results]):
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            content = description.strip() or " ".join(snippets).strip()
            # Brave exposes no relevance score, rank order stands in for one.
            score = max(0.0, 1.0 - (idx / total))
            results.append(
                SearchResultItem(
                    title=item.get("title", ""),
                    url=sanitize_url(item.get("url", "")),
                    content=content,
                    score=score,
                )
            )
            thumbnail = (item.get("thumbnail") or {}).get("src")
            if thumbnail:
                images.append(SearchResultImage(url=sanitize_url(thumbnail), description=item.get("title", "")))

        return SearchResults(
            query=query,
            results=results,
            images=images,
            number_of_results=len(results),
        )
