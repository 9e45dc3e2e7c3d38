from __future__ import annotations

import dataclasses
from typing import Any, AsyncIterator, Literal

from loguru import logger
from pydantic import BaseModel, Field

from morphic.config import settings
from morphic.tools.base import COMPLETE, Tool, ToolEvent
from morphic.tools.providers.base import SearchResults
from morphic.tools.providers.registry import DEFAULT_PROVIDER, create_search_provider

MIN_RESULTS = 10

ContentType = Literal["web", "video", "image", "news"]

# Model families whose tool calling rejects optional fields.
STRICT_SCHEMA_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class SearchInput(BaseModel):
    query: str = Field(description="The query to search for")
    type: Literal["optimized", "general"] = Field(
        default="optimized",
        description="'optimized' for research answers, 'general' for broad or video results",
    )
    content_types: list[ContentType] = Field(
        default_factory=lambda: ["web"],
        description="Content types to include (only used with type='general')",
    )
    max_results: int = Field(default=20, description="The maximum number of results to return")
    search_depth: Literal["basic", "advanced"] = Field(
        default="basic", description="The depth of the search"
    )
    include_domains: list[str] = Field(
        default_factory=list, description="Only include results from these domains"
    )
    exclude_domains: list[str] = Field(
        default_factory=list, description="Exclude results from these domains"
    )


class StrictSearchInput(SearchInput):
    """Every field required, for models whose tool schemas must be strict."""

    query: str = Field(description="The query to search for")
    type: Literal["optimized", "general"] = Field(
        description="'optimized' for research answers, 'general' for broad or video results"
    )
    content_types: list[ContentType] = Field(description="Content types to include")
    max_results: int = Field(description="The maximum number of results to return")
    search_depth: Literal["basic", "advanced"] = Field(description="The depth of the search")
    include_domains: list[str] = Field(description="Only include results from these domains")
    exclude_domains: list[str] = Field(description="Exclude results from these domains")


def get_search_schema_for_model(model: str) -> type[SearchInput]:
    model_name = model.replace(":", "/").rsplit("/", 1)[-1].lower()
    if model_name.startswith(STRICT_SCHEMA_MODEL_PREFIXES):
        return StrictSearchInput
    return SearchInput


class SearchTool(Tool):
    name = "search"
    description = (
        "Search the web for information. For YouTube/video content, use type=\"general\" "
        "with content_types:[\"video\"] for optimal visual presentation with thumbnails."
    )

    def __init__(self, model: str):
        self.model = model
        self.input_model = get_search_schema_for_model(model)

    async def execute(self, params: SearchInput, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        yield ToolEvent(state="searching", data={"state": "searching", "query": params.query})

        effective_max_results = max(params.max_results or MIN_RESULTS, MIN_RESULTS)

        if params.type == "general":
            provider_name = "brave"
        else:
            provider_name = settings.search_api or DEFAULT_PROVIDER

        logger.info(
            f"Using search API: {provider_name}, Type: {params.type}, Search Depth: {params.search_depth}"
        )

        options: dict[str, Any] = {}
        if provider_name == "brave":
            options["content_types"] = list(params.content_types)

        provider = create_search_provider(provider_name)
        results = await provider.search(
            params.query,
            effective_max_results,
            params.search_depth,
            list(params.include_domains),
            list(params.exclude_domains),
            **options,
        )

        # Providers may hand back a cached object; annotate a copy.
        citation_map = {index + 1: item for index, item in enumerate(results.results)} or None
        annotated = dataclasses.replace(results, citation_map=citation_map, tool_call_id=tool_call_id)

        yield ToolEvent.complete(annotated.to_dict())


class QuickModeSearchTool(Tool):
    """Search tool that always runs the 'optimized' profile.

    Events from the wrapped tool pass through unmodified.
    """

    def __init__(self, wrapped: SearchTool):
        self.wrapped = wrapped
        self.name = wrapped.name
        self.description = wrapped.description
        self.input_model = wrapped.input_model

    async def execute(self, params: SearchInput, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        forced = params.model_copy(update={"type": "optimized"})
        async for event in self.wrapped.execute(forced, tool_call_id=tool_call_id):
            yield event


async def search(
    query: str,
    max_results: int = 10,
    search_depth: str = "basic",
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
) -> dict[str, Any]:
    """Run a general search outside the agent loop and return the final payload."""
    tool = SearchTool(settings.default_model)
    params = SearchInput(
        query=query,
        type="general",
        max_results=max_results,
        search_depth=search_depth,
        include_domains=include_domains or [],
        exclude_domains=exclude_domains or [],
    )
    final: dict[str, Any] | None = None
    async for event in tool.execute(params, tool_call_id="search"):
        if event.state == COMPLETE:
            final = {k: v for k, v in event.data.items() if k != "state"}
    return final or SearchResults(query=query).to_dict()
