"""structlog + stdlib logging setup for ingestion workers and batch jobs.

Both ``structlog.get_logger()`` (used throughout this package) and plain
``logging.getLogger(__name__)`` calls from SQLAlchemy or Alembic end up
in the same handler, rendered either as JSON lines or as coloured
console output.
"""

import logging
import sys

import structlog

from listing_dedup.config.settings import get_settings


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(json_output: bool | None = None, log_level: str | None = None) -> None:
    """Route structlog and stdlib records through one renderer.

    Args:
        json_output: Render JSON lines when ``True``, console output when
            ``False``.  Defaults to ``Settings.log_json``.
        log_level: Root level name such as ``"INFO"``.  Defaults to
            ``Settings.log_level``.
    """
    settings = get_settings()
    if json_output is None:
        json_output = settings.log_json
    level_name = (log_level or settings.log_level).upper()

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name))

    # SQL echo stays opt-in through the engine, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
