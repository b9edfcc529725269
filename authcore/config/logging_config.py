"""Root logging configuration driven by settings.log_level / settings.log_format.

Application modules keep using ``logging.getLogger(__name__)``; their records
are rendered by structlog through a ``ProcessorFormatter`` on the root handler.
"""

import logging

import structlog

SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def build_formatter(fmt: str = "json") -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering stdlib and structlog records alike.

    Args:
        fmt: "json" for one JSON object per line, "text" for console output

    """
    if fmt == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single structlog-rendered stream handler on the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        fmt: "json" for structured output, "text" for human-readable lines

    """
    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(fmt))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
