import logging
import sys

import structlog

def configure_logging(log_level: str = "INFO", force_json: bool = False):
    """
    Configures structlog and standard library logging.

    Args:
        log_level: The minimum log level to output (e.g., "INFO", "DEBUG").
        force_json: If True, always use JSONRenderer. Otherwise, uses ConsoleRenderer
                    if sys.stdout.isatty() and not force_json.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.format_exc_info,
        structlog.contextvars.merge_contextvars,
    ]

    is_tty = sys.stdout.isatty()
    if force_json or not is_tty:
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # basicConfig from the config phase may already have attached a plain handler
    for existing in list(root_logger.handlers):
        if not isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            root_logger.removeHandler(existing)
    if not root_logger.handlers:
        root_logger.addHandler(handler)

    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        root_logger.setLevel(logging.INFO)
        structlog.get_logger(__name__).warning("Invalid LOG_LEVEL, defaulting to INFO", log_level=log_level)
    else:
        root_logger.setLevel(numeric_level)
