from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


# Tile the current run works on, stamped on every record.
_TILE: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("landloc_tile", default=None)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 169..., "lvl": "INFO", "name": "landloc.indexer", "tile": 7, "msg": "Index written", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
        }
        tile = _TILE.get()
        if tile is not None:
            payload["tile"] = tile
        payload["msg"] = record.getMessage()
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, *, log_file: Optional[str] = None, force: bool = False) -> None:
    """
    Configure the root logger with JSON lines on stdout (and log_file, appended,
    when given).

    Level precedence: explicit `level`, env LOG_LEVEL, INFO.
    The first call wins; `force=True` reconfigures (the driver does this once the
    parameter file is read).
    """
    root = logging.getLogger()
    if getattr(root, "_landloc_configured", False) and not force:
        return

    lvl = logging.getLevelName((level or os.environ.get("LOG_LEVEL") or "INFO").upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO

    fmt = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    for h in root.handlers:
        if getattr(h, "_landloc", False):
            root.removeHandler(h)
            h.close()
    for h in handlers:
        h.setFormatter(fmt)
        h._landloc = True  # type: ignore[attr-defined]
        root.addHandler(h)
    root.setLevel(lvl)
    root._landloc_configured = True  # type: ignore[attr-defined]


@contextmanager
def tile_context(tile_id: Optional[int]) -> Iterator[None]:
    """Tag every record logged inside the block with tile_id."""
    token = _TILE.set(tile_id)
    try:
        yield
    finally:
        _TILE.reset(token)


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the root logger with defaults on first use."""
    setup_logging()
    return logging.getLogger(name)
