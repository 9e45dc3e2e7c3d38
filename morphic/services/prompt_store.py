"""Researcher prompt catalog shipped as package data."""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


def _flatten(node: dict[str, Any], prefix: str = "") -> dict[str, str]:
    flat: dict[str, str] = {}
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{key}."))
        elif isinstance(value, str):
            flat[key] = value
        else:
            raise TypeError(f"Prompt {key} must be a string or a group of prompts")
    return flat


@lru_cache(maxsize=1)
def load_prompts() -> dict[str, Template]:
    """Dotted prompt key -> template, e.g. ``researcher.quick``."""
    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")
    return {key: Template(text) for key, text in _flatten(payload).items()}


def render_prompt(key: str, **values: Any) -> str:
    try:
        template = load_prompts()[key]
    except KeyError:
        raise KeyError(f"Prompt key not found: {key}") from None
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc
