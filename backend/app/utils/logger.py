# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Structured Logging
structlog setup shared by the API and the generator. Entries carry the
app label and version; a generation batch binds its puzzle_id through
contextvars so every piece event, including those logged from worker
threads, names the puzzle it belongs to.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from app.config import get_settings

APP_NAME = "piececutter"
APP_VERSION = "1.0.0"


def _add_app_info(
    logger: Any, method: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    event_dict.setdefault("version", APP_VERSION)
    return event_dict


def _drop_color_message_key(
    logger: Any, method: str, event_dict: EventDict
) -> EventDict:
    """uvicorn duplicates every message as color_message."""
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog once at startup.

    Args:
        level: Overrides LOG_LEVEL. DEBUG renders coloured console lines,
               anything else renders one JSON object per line.
    """
    level_name = (level or get_settings().log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _add_app_info,
        _drop_color_message_key,
    ]
    if level_name == "DEBUG":
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )

    # uvicorn and httpx log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """
    Bind values (e.g. puzzle_id) to every entry logged inside the block.
    Only the keys bound here are removed on exit.

        with log_context(puzzle_id=puzzle_id):
            log.info("stage_start", stage="generating_pieces")
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str = APP_NAME) -> structlog.BoundLogger:
    """Return a structlog logger; modules call get_logger(__name__)."""
    return structlog.get_logger(name)
