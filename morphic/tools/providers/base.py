from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from morphic.errors import MissingApiKeyError


@dataclass
class SearchResultItem:
    title: str
    url: str
    content: str
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title, "url": self.url, "content": self.content}
        if self.score is not None:
            data["score"] = self.score
        return data


@dataclass
class SearchResultImage:
    url: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "description": self.description}


@dataclass
class SearchResults:
    query: str = ""
    results: list[SearchResultItem] = field(default_factory=list)
    images: list[SearchResultImage] = field(default_factory=list)
    answer: str | None = None
    number_of_results: int | None = None
    citation_map: dict[int, SearchResultItem] | None = None
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "images": [i.to_dict() for i in self.images],
            "number_of_results": (
                self.number_of_results if self.number_of_results is not None else len(self.results)
            ),
        }
        if self.answer:
            data["answer"] = self.answer
        if self.citation_map:
            data["citationMap"] = {str(k): v.to_dict() for k, v in self.citation_map.items()}
        if self.tool_call_id:
            data["toolCallId"] = self.tool_call_id
        return data


class BaseSearchProvider(ABC):
    """A search vendor that turns a query into normalized ``SearchResults``."""

    name: str = "base"

    @abstractmethod
    async def search(
        self,
        query: str,
        max_results: int = 10,
        search_depth: str = "basic",
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        **options: Any,
    ) -> SearchResults:
        raise NotImplementedError

    @staticmethod
    def validate_api_key(api_key: str | None, provider_name: str) -> None:
        if not api_key:
            raise MissingApiKeyError(f"{provider_name}_API_KEY is not configured")
