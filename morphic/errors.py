"""Exceptions shared across the researcher, tools and persistence layers."""
from __future__ import annotations


class MalformedPartError(ValueError):
    """A persisted part row violates the part invariants and cannot be decoded."""


class MessageNotFoundError(LookupError):
    """A regeneration target could not be located in the conversation."""


class SearchTimeoutError(TimeoutError):
    """A search provider request exceeded its per-call timeout."""


class MissingApiKeyError(RuntimeError):
    """A provider was used without its API key configured."""


class AccessDeniedError(PermissionError):
    """The acting user may not write to the requested chat."""
