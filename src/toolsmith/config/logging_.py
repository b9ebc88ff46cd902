"""Logging setup driven by ToolsmithSettings."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolsmith.config.settings import ToolsmithSettings

_HANDLER_MARKER = "_toolsmith_handler"


def configure_logging(settings: ToolsmithSettings | None = None) -> logging.Logger:
    """Attach a handler to the ``toolsmith`` logger.

    Honours ``log_level``, ``log_format`` (``text`` or ``json``) and
    ``log_file``. Calling it again replaces the previously installed handler.

    Returns:
        The configured ``toolsmith`` logger.
    """
    if settings is None:
        from toolsmith.config.settings import get_settings

        settings = get_settings()

    root = logging.getLogger("toolsmith")
    level = "DEBUG" if settings.debug else settings.log_level
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    handler: logging.Handler
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
    return root


class JsonFormatter(logging.Formatter):
    """Emit log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            data["exception"] = str(record.exc_info[1])
        return json.dumps(data)
