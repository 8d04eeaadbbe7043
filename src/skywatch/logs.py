"""structlog configuration: one JSON line per event, on stdout and in a daily rotated file."""

import logging
import logging.handlers
import os
import sys
import typing

import structlog

LOG_FILE = "skywatch.log"

# Applied to structlog events and to records from plain stdlib loggers alike
SHARED_PROCESSORS: list[typing.Any] = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def resolve_log_dir(log_dir: str) -> str:
    """The configured directory if writable, else ``./.logs``."""
    try:
        os.makedirs(log_dir, exist_ok=True)
        if os.access(log_dir, os.W_OK):
            return log_dir
    except OSError:
        pass
    fallback = os.path.join(os.getcwd(), ".logs")
    os.makedirs(fallback, exist_ok=True)
    return fallback


def setup_logging(level: str = "INFO", log_dir: str | None = "/var/log/skywatch") -> str | None:
    """
    Route structlog through stdlib logging with a JSON renderer.

    Returns the log file path, or ``None`` when only stdout is used
    (``log_dir=None`` or the file could not be opened).
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = None
    if log_dir is not None:
        path = os.path.join(resolve_log_dir(log_dir), LOG_FILE)
        try:
            handlers.append(
                logging.handlers.TimedRotatingFileHandler(path, when="midnight", backupCount=30, encoding="utf-8")
            )
            log_file = path
        except OSError as e:
            print(f"File logging disabled ({path}): {e}", file=sys.stderr)

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_file
