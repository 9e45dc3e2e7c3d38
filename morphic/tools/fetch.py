from __future__ import annotations

import re
from typing import AsyncIterator

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from morphic.config import settings
from morphic.tools.base import Tool, ToolEvent
from morphic.utils.web_utils import is_valid_url

STRIP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form")

USER_AGENT = "Mozilla/5.0 (compatible; MorphicFetcher/0.1)"


class FetchInput(BaseModel):
    url: str = Field(description="The URL to fetch")


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def extract_page(raw_html: str) -> tuple[str, str]:
    """Return (title, readable text) for an HTML document."""
    soup = BeautifulSoup(raw_html, "html.parser")
    title = soup.title.string if soup.title and soup.title.string else ""
    for tag in soup(STRIP_TAGS):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    return _normalize_text(title), _normalize_text(root.get_text("\n"))


class FetchTool(Tool):
    name = "fetch"
    description = (
        "Fetch the content of a web page. Use it to read a specific URL in full "
        "after search surfaced it."
    )
    input_model = FetchInput

    async def execute(self, params: FetchInput, *, tool_call_id: str) -> AsyncIterator[ToolEvent]:
        yield ToolEvent(state="fetching", data={"state": "fetching", "url": params.url})

        if not is_valid_url(params.url):
            raise ValueError(f"Invalid URL: {params.url}")

        async with httpx.AsyncClient(
            timeout=settings.fetch_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            response = await client.get(params.url)
            response.raise_for_status()
            content_type = response.headers.get("content-type", "")
            body = response.text

        if "html" in content_type or body.lstrip().startswith("<"):
            title, text = extract_page(body)
        else:
            title, text = "", _normalize_text(body)

        yield ToolEvent.complete(
            {
                "query": params.url,
                "results": [
                    {
                        "title": title or params.url,
                        "url": params.url,
                        "content": _truncate(text, settings.fetch_max_chars),
                    }
                ],
                "images": [],
                "number_of_results": 1,
                "toolCallId": tool_call_id,
            }
        )
