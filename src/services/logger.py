"""
Logging setup for the engine

One root configuration shared by every module (`logging.getLogger(__name__)`):
a colored console stream, an engine log plus an errors-only log that rotate
by size, and optional JSON lines. Records carry the id of the round being
played so a crash can be traced through the log.
"""

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import colorlog

_MANAGED_FLAG = "_skybound_managed"

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

DEFAULTS: dict[str, Any] = {
    "log_dir": "./logs",
    "console_level": "INFO",
    "file_level": "DEBUG",
    "max_bytes": 5 * 1024 * 1024,
    "backup_count": 3,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "colored_output": True,
    "json_logs": False,
    "file_logging": True,
}


class RoundContextFilter(logging.Filter):
    """Stamps every record with the round currently in play ("-" between rounds)"""

    _shared_round_id = "-"

    @classmethod
    def set_round(cls, round_id: str | None):
        cls._shared_round_id = round_id or "-"

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "round_id"):
            record.round_id = self._shared_round_id
        return True


class LoggerService:
    """
    Owns the handlers installed on the root logger

    Handlers it installs are tagged so a second setup replaces them instead
    of stacking duplicates. When the log directory cannot be created or
    written, logging stays console-only.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = {**DEFAULTS, **(config or {})}
        self.handlers: list[logging.Handler] = []
        self.loggers: dict[str, logging.Logger] = {}
        self.context = RoundContextFilter()

        self.log_dir: Path | None = None
        if self.config["file_logging"]:
            self.log_dir = self._writable_dir(Path(self.config["log_dir"]))

        self._install()

    @staticmethod
    def _writable_dir(path: Path) -> Path | None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError:
            return None
        return path if os.access(path, os.W_OK) else None

    def _install(self):
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)  # handlers do the filtering

        for stale in [h for h in root.handlers if getattr(h, _MANAGED_FLAG, False)]:
            root.removeHandler(stale)
            stale.close()

        self._attach(self._console_handler())
        if self.log_dir is not None:
            self._attach(self._rotating_handler("engine.log", self.config["file_level"]))
            self._attach(self._rotating_handler("errors.log", "ERROR"))

    def _attach(self, handler: logging.Handler):
        setattr(handler, _MANAGED_FLAG, True)
        handler.addFilter(self.context)
        logging.getLogger().addHandler(handler)
        self.handlers.append(handler)

    def _plain_formatter(self) -> logging.Formatter:
        return logging.Formatter(self.config["format"], datefmt=self.config["date_format"])

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(self._level(self.config["console_level"]))
        if self.config["colored_output"]:
            handler.setFormatter(
                colorlog.ColoredFormatter(
                    "%(log_color)s" + self.config["format"],
                    datefmt=self.config["date_format"],
                    log_colors=LEVEL_COLORS,
                )
            )
        else:
            handler.setFormatter(self._plain_formatter())
        return handler

    def _rotating_handler(self, filename: str, level: str) -> logging.Handler:
        try:
            handler: logging.Handler = RotatingFileHandler(
                self.log_dir / filename,
                maxBytes=self.config["max_bytes"],
                backupCount=self.config["backup_count"],
            )
        except OSError:
            handler = logging.StreamHandler(sys.stderr)

        handler.setLevel(self._level(level))
        handler.setFormatter(JsonFormatter() if self.config["json_logs"] else self._plain_formatter())
        return handler

    @staticmethod
    def _level(name: str) -> int:
        return getattr(logging, str(name).upper(), logging.INFO)

    def get_logger(self, name: str) -> logging.Logger:
        return self.loggers.setdefault(name, logging.getLogger(name))

    def set_level(self, level: str, logger_name: str | None = None):
        """Change the console threshold, or the level of one named logger"""
        if logger_name:
            logging.getLogger(logger_name).setLevel(self._level(level))
            return
        for handler in self.handlers:
            if getattr(handler, "stream", None) is sys.stdout:
                handler.setLevel(self._level(level))

    def cleanup(self):
        root = logging.getLogger()
        for handler in self.handlers:
            root.removeHandler(handler)
            handler.close()
        self.handlers.clear()
        self.loggers.clear()


class JsonFormatter(logging.Formatter):
    """One JSON object per line; extra record attributes are kept"""

    _STANDARD = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in self._STANDARD and not key.startswith("_")
        )
        return json.dumps(entry, default=str)


class PerformanceLogger:
    """
    Times a block and logs the outcome

    Usage:
        with PerformanceLogger(logger, "simulate 100 rounds"):
            ...
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.started: datetime | None = None

    def __enter__(self):
        self.started = datetime.now()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = (datetime.now() - self.started).total_seconds()
        if exc_type is None:
            self.logger.info(f"Operation '{self.operation}' completed in {elapsed:.3f}s")
        else:
            self.logger.error(f"Operation '{self.operation}' failed after {elapsed:.3f}s: {exc_val}")


_service: LoggerService | None = None


def setup_logging(overrides: dict | None = None, force: bool = False) -> logging.Logger:
    """
    Install the engine's handlers on the root logger

    Args:
        overrides: Values layered over the logging config section (e.g. file_logging=False)
        force: Reinstall even when logging is already set up

    Returns:
        The root logger
    """
    global _service

    if _service is not None and not force:
        return logging.getLogger()

    from config import config as app_config

    section = app_config.section("logging")
    settings = {
        "log_dir": section["log_dir"],
        "console_level": section["level"],
        "max_bytes": section["max_bytes"],
        "backup_count": section["backup_count"],
        "format": section["format"],
        "date_format": section["date_format"],
        **(overrides or {}),
    }

    if _service is not None:
        _service.cleanup()
    _service = LoggerService(settings)
    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    if _service is None:
        setup_logging()
    return _service.get_logger(name)


def cleanup_logging():
    global _service
    if _service is not None:
        _service.cleanup()
        _service = None
