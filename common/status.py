"""
Run outcome reporting shared by the indexing and matching drivers.

Every per-tile run ends in one of three outcomes consumed by the external
orchestrator: success, argument-or-data error, or other failure. Argument and
data errors keep distinct exit codes so a scheduler can tell "rerun with other
inputs" from "the tile genuinely has nothing to match".
"""
from __future__ import annotations

import json
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional

from common.utils import iso_now_ms


class ArgumentError(ValueError):
    """Missing or invalid required input (unknown tile id, empty path, bad image id...)."""


class DataError(RuntimeError):
    """Inputs are well-formed but the data cannot support the request (empty index, raster gap...)."""


class IndexFormatError(DataError):
    """A persisted descriptor index is corrupt, truncated or of an unknown version."""


class ExitStatus(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    ARGUMENT_ERROR = 2
    DATA_ERROR = 3

    @property
    def is_input_error(self) -> bool:
        return self in (ExitStatus.ARGUMENT_ERROR, ExitStatus.DATA_ERROR)


STATUS_FILE = "status.json"


def status_for(exc: BaseException) -> ExitStatus:
    """Map an exception raised by a run to the reported status."""
    if isinstance(exc, ArgumentError):
        return ExitStatus.ARGUMENT_ERROR
    if isinstance(exc, DataError):
        return ExitStatus.DATA_ERROR
    return ExitStatus.FAILURE


def write_status(out_folder: str | Path, status: ExitStatus, **details: Any) -> Optional[Path]:
    """
    Write `status.json` into out_folder. Returns None when no folder was given
    (argument errors can happen before an output folder is known).
    """
    if not str(out_folder or ""):
        return None
    p = Path(out_folder)
    p.mkdir(parents=True, exist_ok=True)
    row: Dict[str, Any] = {"ts": iso_now_ms(), "status": status.name, "code": int(status)}
    row.update(details)
    path = p / STATUS_FILE
    path.write_text(json.dumps(row, indent=2, default=str))
    return path


def read_status(out_folder: str | Path) -> Dict[str, Any]:
    return json.loads((Path(out_folder) / STATUS_FILE).read_text())
