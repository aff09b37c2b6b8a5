from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

from rich.console import Console
from rich.logging import RichHandler

_QUIET_LOGGERS = ("httpx", "httpcore", "hpack")
_CONFIGURED = False


@dataclass(slots=True)
class LogSettings:
    """Logging options read from the environment."""

    level: int = logging.INFO
    noise: str = "low"
    log_dir: Optional[Path] = None
    max_file_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3

    @classmethod
    def from_env(cls) -> "LogSettings":
        level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
        log_dir = os.getenv("LOG_DIR", "").strip()
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            noise=os.getenv("LOG_NOISE", "low").strip().lower() or "low",
            log_dir=Path(log_dir) if log_dir else None,
        )


class _ComponentAdapter(logging.LoggerAdapter):
    """Adapter tagging records with a component and optional stage/payload."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra: Dict[str, Any] = dict(kwargs.get("extra") or {})
        extra.setdefault("component", self.extra.get("component") or self.logger.name)
        for key in ("stage", "payload"):
            value = kwargs.pop(key, None)
            if value is None:
                value = extra.pop(key, None)
            if value is not None:
                extra[key] = value
        kwargs["extra"] = extra
        return msg, kwargs


def _render_payload(payload: Any) -> str:
    if isinstance(payload, Mapping):
        return " ".join(f"{key}={value}" for key, value in payload.items())
    return str(payload)


class _LineFormatter(logging.Formatter):
    """One line per record: ``[time] [LEVEL] [component] message (context)``."""

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", record.name)
        line = f"[{self.formatTime(record, self.datefmt)}] [{record.levelname}] [{component}] {record.getMessage()}"

        context = []
        stage = getattr(record, "stage", None)
        if stage:
            context.append(f"stage={stage}")
        payload = getattr(record, "payload", None)
        if payload:
            context.append(_render_payload(payload))
        if context:
            line += f" ({', '.join(context)})"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _MilestoneFilter(logging.Filter):
    """Hide INFO chatter unless the record is a milestone from :func:`info_domain`."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno != logging.INFO or bool(getattr(record, "milestone", False))


def setup_logging(settings: LogSettings | None = None) -> logging.Logger:
    """Install the console (and optional file) handler on the root logger once."""

    global _CONFIGURED
    root = logging.getLogger()
    if _CONFIGURED:
        return root

    settings = settings or LogSettings.from_env()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(settings.level)

    console = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_level=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console.setFormatter(_LineFormatter(datefmt="%H:%M:%S"))
    if settings.noise != "debug":
        console.addFilter(_MilestoneFilter())
    root.addHandler(console)

    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.log_dir / "protocache.log",
            maxBytes=settings.max_file_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_LineFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True
    return root


def get_logger(name: str) -> logging.LoggerAdapter:
    return _ComponentAdapter(logging.getLogger(name), {"component": name})


def info_domain(module: str, message: str, *, stage: str | None = None, **context: Any) -> None:
    """Log an INFO milestone that stays visible with ``LOG_NOISE=low``."""

    extra: Dict[str, Any] = {"milestone": True}
    if context:
        extra["payload"] = context
    get_logger(module).info(message, extra=extra, stage=stage)


def log_event(
    level: str | int,
    module: str,
    message: str,
    *,
    stage: str | None = None,
    extra: Mapping[str, Any] | None = None,
    exc_info: Any | None = None,
) -> None:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    get_logger(module).log(
        level,
        message,
        exc_info=exc_info,
        stage=stage,
        payload=dict(extra) if extra else None,
    )


__all__ = [
    "LogSettings",
    "get_logger",
    "info_domain",
    "log_event",
    "setup_logging",
]
