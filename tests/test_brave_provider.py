from __future__ import annotations

import httpx
import pytest

from morphic.config import settings
from morphic.errors import MissingApiKeyError
from morphic.tools.providers.brave import BRAVE_SEARCH_URL, BraveSearchProvider
from morphic.tools.providers.registry import create_search_provider, reset_providers
from morphic.tools.providers.tavily import TavilySearchProvider


class _FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"{self.status_code} error",
                request=httpx.Request("GET", BRAVE_SEARCH_URL),
                response=httpx.Response(self.status_code),
            )

    def json(self) -> dict:
        return self.payload


BRAVE_PAYLOAD = {
    "web": {
        "results": [
            {
                "title": "Python",
                "url": "https://python.org/a b",
                "description": "The language. ",
                "thumbnail": {"src": "https://img.example.com/py.png"},
            },
            {"title": "Docs", "url": "https://docs.python.org", "description": "", "extra_snippets": ["Read", "the docs"]},
        ]
    },
    "videos": {"results": [{"title": "Talk", "url": "https://video.example.com/1", "description": "A talk"}]},
}


@pytest.fixture
def brave_requests(monkeypatch):
    monkeypatch.setattr(settings, "brave_api_key", "brave-key")
    requests: list[dict] = []

    async def fake_get(self, url, **kwargs):  # noqa: ARG001
        requests.append({"url": url, **kwargs})
        return _FakeResponse(BRAVE_PAYLOAD)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    return requests


@pytest.mark.asyncio
async def test_search_parses_results_and_thumbnails(brave_requests):
    results = await BraveSearchProvider().search("python", 10)

    assert [r.url for r in results.results] == ["https://python.org/a%20b", "https://docs.python.org"]
    assert results.results[0].content == "The language."
    assert results.results[1].content == "Read the docs"
    assert [r.score for r in results.results] == [1.0, 0.5]
    assert [(i.url, i.description) for i in results.images] == [("https://img.example.com/py.png", "Python")]
    assert results.number_of_results == 2

    request = brave_requests[0]
    assert request["url"] == BRAVE_SEARCH_URL
    assert request["headers"]["X-Subscription-Token"] == "brave-key"
    assert request["params"]["result_filter"] == "web"


@pytest.mark.asyncio
async def test_content_types_select_result_sections(brave_requests):
    results = await BraveSearchProvider().search("python", 10, content_types=["web", "video", "image"])

    assert brave_requests[0]["params"]["result_filter"] == "web,videos"
    assert results.results[-1].url == "https://video.example.com/1"


@pytest.mark.asyncio
async def test_unknown_content_types_fall_back_to_web(brave_requests):
    await BraveSearchProvider().search("python", 10, content_types=["image"])

    assert brave_requests[0]["params"]["result_filter"] == "web"


@pytest.mark.asyncio
async def test_domain_filters_become_site_operators(brave_requests):
    await BraveSearchProvider().search(
        "asyncio",
        10,
        include_domains=["python.org", "realpython.com"],
        exclude_domains=["pinterest.com"],
    )

    assert brave_requests[0]["params"]["q"] == (
        "asyncio site:python.org OR site:realpython.com -site:pinterest.com"
    )


@pytest.mark.asyncio
async def test_count_is_capped_and_results_trimmed(brave_requests):
    results = await BraveSearchProvider().search("python", 1)
    await BraveSearchProvider().search("python", 50)

    assert [r["params"]["count"] for r in brave_requests] == [1, 20]
    assert len(results.results) == 1


@pytest.mark.asyncio
async def test_http_error_propagates(monkeypatch):
    monkeypatch.setattr(settings, "brave_api_key", "brave-key")

    async def fake_get(self, url, **kwargs):  # noqa: ARG001
        return _FakeResponse({}, status_code=429)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    with pytest.raises(httpx.HTTPStatusError):
        await BraveSearchProvider().search("python", 10)


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "brave_api_key", "")

    with pytest.raises(MissingApiKeyError, match="BRAVE_API_KEY"):
        await BraveSearchProvider().search("python", 10)


# --- Provider registry ---


@pytest.fixture
def fresh_providers():
    reset_providers()
    yield
    reset_providers()


def test_registry_reuses_one_instance_per_provider(fresh_providers):
    tavily = create_search_provider("Tavily ")

    assert isinstance(tavily, TavilySearchProvider)
    assert create_search_provider() is tavily
    assert isinstance(create_search_provider("brave"), BraveSearchProvider)


def test_reset_providers_drops_cached_instances(fresh_providers):
    first = create_search_provider("tavily")
    reset_providers()

    assert create_search_provider("tavily") is not first


def test_registry_rejects_unknown_provider(fresh_providers):
    with pytest.raises(ValueError, match="Unsupported SEARCH_API"):
        create_search_provider("bing")
