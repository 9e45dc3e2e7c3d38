"""Morphic - AI conversational search

Simple CLI for running one researcher turn without persistence.
"""

import argparse
import asyncio

from morphic.agents.modes import SearchMode
from morphic.agents.researcher import create_researcher
from morphic.llm_client import get_model
from morphic.models.parts import TextPart, UIMessage, generate_id
from morphic.services import database as db


async def run_research(query: str, mode: str, model: str | None = None):
    """Run the researcher on the given query."""
    print(f"Query: {query}")
    print(f"Mode: {mode}")
    print("-" * 50)

    researcher = create_researcher(get_model(model), mode)
    messages = [UIMessage(id=generate_id(), role="user", parts=[TextPart(text=query)])]

    async for event in researcher.stream(messages):
        event_type = event.event.value
        data = event.data

        if event_type == "text-delta":
            print(data.get("delta", ""), end="", flush=True)

        elif event_type == "tool-input-available":
            tool_input = data.get("input") or {}
            detail = tool_input.get("query") or tool_input.get("url") or ""
            print(f"\n[~] {data.get('toolName')}: {detail}")

        elif event_type == "tool-output-available":
            output = data.get("output") or {}
            print(f"  [+] {output.get('number_of_results', 0)} results")

        elif event_type == "tool-output-error":
            print(f"  [!] {data.get('errorText')}")

        elif event_type == "finish":
            print(f"\n\n[*] Finished: {data.get('finishReason')}")

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('errorText', 'Unknown error')}")


def main():
    parser = argparse.ArgumentParser(description="Morphic conversational search")
    parser.add_argument("--query", "-q", help="Question to research")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SearchMode],
        default=SearchMode.ADAPTIVE.value,
        help="Search mode",
    )
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--init-db", action="store_true", help="Create the database schema and exit")

    args = parser.parse_args()

    if args.init_db:
        asyncio.run(_init_db())
        return
    if not args.query:
        parser.error("--query is required")

    asyncio.run(run_research(args.query, args.mode, args.model))


async def _init_db():
    await db.init_schema()
    await db.close_pool()
    print("Database schema ready.")


if __name__ == "__main__":
    main()
