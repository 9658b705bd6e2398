import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from health_insights.config.settings import settings

_BASE_LOGGER_NAME = "health_insights"
_FILE_HANDLER_MARK = "_health_insights_debug_file"
_CONFIGURED = False


def _level_or(level_name: str, fallback: int) -> tuple[int, bool]:
    level = getattr(logging, (level_name or "").strip().upper(), None)
    if isinstance(level, int):
        return level, True
    return fallback, False


def _attach_file_handler(base_logger: logging.Logger) -> None:
    if any(getattr(h, _FILE_HANDLER_MARK, False) for h in base_logger.handlers):
        return

    backup_count = settings.LOG_FILE_BACKUP_COUNT
    if backup_count < 0:
        base_logger.warning(
            "[logger] Invalid LOG_FILE_BACKUP_COUNT '%s', fallback to 7",
            backup_count,
        )
        backup_count = 7

    file_level, valid = _level_or(settings.LOG_FILE_LEVEL, logging.DEBUG)
    if not valid:
        base_logger.warning(
            "[logger] Invalid LOG_FILE_LEVEL '%s', fallback to DEBUG",
            settings.LOG_FILE_LEVEL,
        )

    try:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(
            filename=str(log_dir / settings.LOG_FILE_NAME),
            when=settings.LOG_FILE_WHEN,
            interval=settings.LOG_FILE_INTERVAL,
            backupCount=backup_count,
            encoding=settings.LOG_FILE_ENCODING,
        )
    except OSError as exc:
        base_logger.warning(
            "[logger] Failed to configure debug file logging at '%s': %s",
            settings.LOG_DIR,
            exc,
        )
        return

    handler.setLevel(file_level)
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    setattr(handler, _FILE_HANDLER_MARK, True)
    base_logger.addHandler(handler)


def configure_logging() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    base_logger = logging.getLogger(_BASE_LOGGER_NAME)
    log_level, valid = _level_or(settings.LOG_LEVEL, logging.INFO)

    if not base_logger.handlers:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        base_logger.addHandler(console)
        base_logger.propagate = False
    # The file handler records DEBUG, so the logger itself must let it through.
    base_logger.setLevel(min(log_level, logging.DEBUG))
    for handler in base_logger.handlers:
        if not getattr(handler, _FILE_HANDLER_MARK, False):
            handler.setLevel(log_level)

    if not valid:
        base_logger.warning(
            "[logger] Invalid LOG_LEVEL '%s', fallback to INFO",
            settings.LOG_LEVEL,
        )

    _attach_file_handler(base_logger)
    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    configure_logging()
    base_logger = logging.getLogger(_BASE_LOGGER_NAME)
    if not name:
        return base_logger
    if name == _BASE_LOGGER_NAME or name.startswith(f"{_BASE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return base_logger.getChild(name)


def _stringify(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, BaseModel):
        return json.dumps(content.model_dump(mode="json", by_alias=True), ensure_ascii=False)
    return str(content)


def log_stage(logger: logging.Logger, stage: str, content: Any) -> None:
    text = _stringify(content)
    if not text:
        logger.info("[%s] output:\n[EMPTY]", stage)
        return

    limit = settings.AGENT_LOG_TRUNCATE
    if len(text) > limit:
        text = f"{text[:limit]} ...[truncated {len(text) - limit} chars]"
    logger.info("[%s] output:\n%s", stage, text)
