"""Search mode policy: system prompt, active tools and step budget per mode."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from morphic.services.prompt_store import render_prompt


class SearchMode(str, Enum):
    QUICK = "quick"
    PLANNING = "planning"
    ADAPTIVE = "adaptive"

    @classmethod
    def parse(cls, value: "str | SearchMode | None") -> "SearchMode":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").lower().strip())
        except ValueError:
            return cls.ADAPTIVE


QUICK_MAX_STEPS = 20
DEFAULT_MAX_STEPS = 50


@dataclass(frozen=True)
class ModePolicy:
    mode: SearchMode
    system_prompt: str
    active_tools: tuple[str, ...]
    max_steps: int
    force_first_step_tool: str | None = None
    # Quick mode pins the search tool to its optimized profile.
    force_optimized_search: bool = False


def get_mode_policy(mode: "str | SearchMode | None", *, has_writer: bool = False) -> ModePolicy:
    """Resolve the policy for a search mode; unknown modes fall back to adaptive.

    Todo tools are only offered when a result-streaming sink is present.
    """
    search_mode = SearchMode.parse(mode)

    if search_mode is SearchMode.QUICK:
        return ModePolicy(
            mode=search_mode,
            system_prompt=render_prompt("researcher.quick"),
            active_tools=("search", "fetch"),
            max_steps=QUICK_MAX_STEPS,
            force_optimized_search=True,
        )

    active_tools: tuple[str, ...] = ("search", "fetch")
    if has_writer:
        active_tools += ("todoWrite", "todoRead")

    if search_mode is SearchMode.PLANNING:
        return ModePolicy(
            mode=search_mode,
            system_prompt=render_prompt("researcher.planning"),
            active_tools=active_tools,
            max_steps=DEFAULT_MAX_STEPS,
            force_first_step_tool="todoWrite" if has_writer else None,
        )

    return ModePolicy(
        mode=search_mode,
        system_prompt=render_prompt("researcher.adaptive"),
        active_tools=active_tools,
        max_steps=DEFAULT_MAX_STEPS,
    )
