"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path

import structlog

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None

ROOT_LOGGER = "catalog_sync"


def _slug(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-") or "source"


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return the application logger.

    Console output is always on; ``log_dir`` adds ``sync.log`` and
    ``error.log`` files plus one file per source.
    """

    global _LOGGING_INITIALISED, _LOG_DIR
    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        handlers: dict[str, dict] = {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "plain",
            },
        }
        if log_dir is not None:
            log_dir = Path(log_dir)
            (log_dir / "sources").mkdir(parents=True, exist_ok=True)
            handlers["sync_file"] = {
                "class": "logging.FileHandler",
                "level": "INFO",
                "filename": str(log_dir / "sync.log"),
                "formatter": "plain",
                "encoding": "utf-8",
            }
            handlers["error_file"] = {
                "class": "logging.FileHandler",
                "level": "ERROR",
                "filename": str(log_dir / "error.log"),
                "formatter": "plain",
                "encoding": "utf-8",
            }
            _LOG_DIR = log_dir
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": handlers,
                "loggers": {
                    ROOT_LOGGER: {
                        "handlers": list(handlers),
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        # Forward structlog events to stdlib logging; JSON rendering happens at handler level
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(ROOT_LOGGER)


def source_logger(source_name: str) -> structlog.BoundLogger:
    """Return a logger bound to ``source_name``, with its own file when a log dir is set."""

    logger_name = f"{ROOT_LOGGER}.source.{_slug(source_name)}"
    if _LOG_DIR is not None:
        source_log_path = _LOG_DIR / "sources" / f"{_slug(source_name)}.log"
        py_logger = logging.getLogger(logger_name)
        if not any(
            isinstance(handler, logging.FileHandler) and handler.baseFilename == str(source_log_path.resolve())
            for handler in py_logger.handlers
        ):
            file_handler = logging.FileHandler(source_log_path, encoding="utf-8")
            root_handlers = logging.getLogger(ROOT_LOGGER).handlers
            if root_handlers:
                file_handler.setFormatter(root_handlers[0].formatter)
            file_handler.setLevel(logging.INFO)
            py_logger.addHandler(file_handler)
    return structlog.get_logger(logger_name).bind(source=source_name)


def log_directory() -> Path | None:
    return _LOG_DIR


__all__ = ["configure_logging", "log_directory", "source_logger"]
