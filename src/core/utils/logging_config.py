"""Logging setup shared by the API process and the CLI.

structlog carries the rebalancing core's events (``plan_generated``,
``rebalance_executed`` ...) with bound context such as vault_id and model.
The API routes log through the stdlib ``logging`` module, which is pointed
at the same stream and level. Everything goes to stderr so JSON printed by
the CLI on stdout stays parseable.
"""

import logging
import sys

import structlog

_configured = False


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    # Resolved per call so a swapped sys.stderr is always honoured
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: int = logging.INFO, json_output: bool = False) -> None:
    """Configure structlog and stdlib logging once per process.

    Later calls are ignored, so the API lifespan and the CLI can both call
    this unconditionally.

    Args:
        level: Minimum level for both structlog and stdlib loggers.
        json_output: Render one JSON object per line instead of the
            human-readable console format.
    """
    global _configured
    if _configured:
        return

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    _configured = True
