from __future__ import annotations

from morphic.tools.providers.base import BaseSearchProvider
from morphic.tools.providers.brave import BraveSearchProvider
from morphic.tools.providers.tavily import TavilySearchProvider

DEFAULT_PROVIDER = "tavily"

_PROVIDER_CLASSES: dict[str, type[BaseSearchProvider]] = {
    "tavily": TavilySearchProvider,
    "brave": BraveSearchProvider,
}

# One instance per provider so caches live for the process lifetime.
_instances: dict[str, BaseSearchProvider] = {}


def create_search_provider(provider: str | None = None) -> BaseSearchProvider:
    name = (provider or DEFAULT_PROVIDER).lower().strip()
    if name not in _PROVIDER_CLASSES:
        raise ValueError(f"Unsupported SEARCH_API: {provider}")
    if name not in _instances:
        _instances[name] = _PROVIDER_CLASSES[name]()
    return _instances[name]


def reset_providers() -> None:
    _instances.clear()
