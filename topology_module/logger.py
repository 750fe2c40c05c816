"""
Centralized logger configuration for the topology engine.

Provides:
- InterceptHandler: bridges stdlib logging to loguru
- LoguruCompat: formatting-friendly wrapper around a bound loguru logger
- configure_logging(app_name): sets up sinks and returns a bound app logger
- get_child_logger(name): per-module logger bound with module=<name>
"""
from __future__ import annotations

import os
import sys
import logging
from pathlib import Path

from loguru import logger


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except Exception:
            level = record.levelno
        # forward to loguru, preserve exception info if present
        logger.opt(exception=record.exc_info).log(level, record.getMessage())


class LoguruCompat:
    def __init__(self, lg):
        self._lg = lg

    def _format_msg(self, *args, **kwargs) -> str:
        if not args:
            return str(kwargs) if kwargs else ""

        fmt = args[0]
        rest = args[1:]
        if not isinstance(fmt, str):
            return " ".join(map(str, args))

        # {} style first, then %-style, then a plain join
        if ("{" in fmt and "}" in fmt) or kwargs:
            try:
                return fmt.format(*rest, **kwargs)
            except (IndexError, KeyError, ValueError):
                pass
        if "%" in fmt and rest:
            try:
                return fmt % rest
            except (TypeError, ValueError):
                pass
        if rest:
            return fmt + " " + " ".join(map(str, rest))
        return fmt

    def bind(self, **fields) -> "LoguruCompat":
        return LoguruCompat(self._lg.bind(**fields))

    def debug(self, *args, **kwargs):
        self._lg.debug(self._format_msg(*args, **kwargs))

    def info(self, *args, **kwargs):
        self._lg.info(self._format_msg(*args, **kwargs))

    def warning(self, *args, **kwargs):
        self._lg.warning(self._format_msg(*args, **kwargs))

    def error(self, *args, **kwargs):
        self._lg.error(self._format_msg(*args, **kwargs))

    def critical(self, *args, **kwargs):
        self._lg.critical(self._format_msg(*args, **kwargs))

    def exception(self, *args, **kwargs):
        msg = self._format_msg(*args, **kwargs) if (args or kwargs) else ""
        self._lg.exception(msg)

    def getChild(self, name: str) -> "LoguruCompat":
        return LoguruCompat(self._lg.bind(module=name))


def configure_logging(app_name: str = "zone_topology") -> LoguruCompat:
    """
    Configure loguru sinks and stdlib logging interception.
    Returns a bound `LoguruCompat` logger for the application.
    """
    logger.remove()
    log_level = os.getenv("TOPOLOGY_LOG_LEVEL", "INFO").upper()
    logger.add(sys.stderr, level=log_level, format="<green>{time}</green> <level>{message}</level>")

    # Optional file sink, only when a directory is configured
    base_logs_dir = os.getenv("TOPOLOGY_LOG_DIR")
    if base_logs_dir:
        try:
            Path(base_logs_dir).mkdir(parents=True, exist_ok=True)
            log_file = str(Path(base_logs_dir) / f"{app_name}.log")
            rotation = os.getenv("TOPOLOGY_LOG_ROTATION", "10 MB")
            retention = os.getenv("TOPOLOGY_LOG_RETENTION", "7 days")
            logger.add(
                log_file,
                level=log_level,
                enqueue=True,
                backtrace=True,
                diagnose=False,
                rotation=rotation,
                retention=retention,
                format="{time} | {level} | {message}",
            )
            logger.info("File logging enabled: {} (rotation={} retention={})", log_file, rotation, retention)
        except OSError as e:
            # stdout/stderr only
            logger.warning("Could not create log sink in {}: {}", base_logs_dir, e)

    # Bridge stdlib logging (aiohttp, dnspython, uvicorn) through loguru
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))

    global _APP_LOGGER
    _APP_LOGGER = LoguruCompat(logger.bind(app=app_name))
    return _APP_LOGGER


_APP_LOGGER: LoguruCompat | None = None


def get_app_logger(app_name: str = "zone_topology") -> LoguruCompat:
    """Return the configured application logger if available; otherwise bind a lightweight one."""
    if _APP_LOGGER is not None:
        return _APP_LOGGER
    return LoguruCompat(logger.bind(app=app_name))


def get_child_logger(name: str, app_name: str = "zone_topology") -> LoguruCompat:
    """Convenience: return a child logger bound with module/name."""
    return get_app_logger(app_name).getChild(name)


__all__ = [
    "InterceptHandler",
    "LoguruCompat",
    "configure_logging",
    "get_app_logger",
    "get_child_logger",
]
