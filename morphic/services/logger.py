"""Loguru sinks and structured log helpers for the research service."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from morphic.config import settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)

if settings.log_to_file:
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "morphic_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
        enqueue=True,
    )

# Framework and client libraries log through the stdlib
for name in ("uvicorn", "uvicorn.access", "sse_starlette.sse", "httpx", "httpcore", "openai", "asyncpg"):
    logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


def _payload(**fields: Any) -> dict[str, Any]:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one model runtime step with its token usage."""
    data = _payload(
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        duration_ms=duration_ms,
        status=status,
        error=error,
    )
    if error:
        logger.error(f"LLM_STEP_FAILED: {data}")
    else:
        logger.info(f"LLM_STEP: {data}")


def log_tool_call(
    tool_name: str,
    tool_call_id: str,
    status: str,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log the terminal outcome of one tool invocation."""
    data = _payload(tool=tool_name, tool_call_id=tool_call_id, status=status, duration_ms=duration_ms, error=error)
    if error:
        logger.warning(f"TOOL_FAILED: {data}")
    else:
        logger.info(f"TOOL: {data}")


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    data = _payload(operation=operation, table=table, status=status, details=details, error=error)
    if error:
        logger.error(f"DB_FAILED: {data}")
    else:
        logger.debug(f"DB: {data}")


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    logger.info(f"EVENT: {_payload(event_type=event_type, message=message, **kwargs)}")
