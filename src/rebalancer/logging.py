"""structlog setup shared by the calculator, the backtester and the data providers.

Log events are snake_case names with key/value context, e.g.
``logger.info("backtest_complete", rebalances=4, total_return_pct="12.5")``.
"""

import logging
import os

import structlog

_NOISY_LOGGERS = ("aiosqlite", "ccxt", "urllib3")


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route stdlib and structlog output through one ProcessorFormatter.

    The renderer is picked from ``log_format`` or, when omitted, the LOG_FORMAT
    environment variable: "json" for machine-readable lines, anything else for
    the coloured console renderer.
    """
    fmt = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Third-party request chatter stays at WARNING unless we are debugging.
    if root_logger.level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def bind_run_context(**values: object) -> None:
    """Attach key/value pairs (e.g. run_id) to every log line of the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context() -> None:
    """Drop everything bound with bind_run_context."""
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
