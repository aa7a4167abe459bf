"""structlog setup for applications embedding the helpers.

Library modules only call `structlog.get_logger()`; the host application
decides how events are rendered.
"""

import logging

import structlog


def configure_logging(level: int = logging.INFO, *, json: bool = False) -> None:
    """Configure structlog rendering and level filtering.

    Args:
        level: Minimum stdlib log level to emit (e.g. logging.DEBUG)
        json: Render events as JSON lines instead of the dev console format
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


__all__ = ["configure_logging"]
