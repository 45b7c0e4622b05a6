from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union


_TRUTHY = {"1", "true", "yes", "on"}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _parse_level(value, default_level: int) -> int:
    if value is None:
        return default_level
    if isinstance(value, int):
        return int(value)
    text = str(value).strip().upper()
    if not text:
        return default_level
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text)
    if isinstance(resolved, int):
        return resolved
    return default_level


def is_root_rank(comm=None) -> bool:
    """
    Return True on rank 0 of an MPI run; True as well when MPI is not in use.

    `comm` may be any communicator exposing Get_rank(); otherwise mpi4py's
    COMM_WORLD is consulted if mpi4py is installed.
    """
    if comm is not None and hasattr(comm, "Get_rank"):
        return int(comm.Get_rank()) == 0

    try:
        from mpi4py import MPI
    except ImportError:
        return True
    return int(MPI.COMM_WORLD.Get_rank()) == 0


def get_log_level_from_env(default: Union[str, int] = "INFO") -> int:
    """
    Resolve log level from env (RBC_LOG_LEVEL, or DEBUG when RBC_DEBUG is truthy).
    """
    default_level = _parse_level(default, logging.INFO)
    env_level = os.environ.get("RBC_LOG_LEVEL")
    if env_level:
        return _parse_level(env_level, default_level)
    if _is_truthy(os.environ.get("RBC_DEBUG")):
        return logging.DEBUG
    return default_level


def setup_logging(
    rank: int,
    *,
    level: int,
    quiet_nonroot: bool = True,
    log_file: Optional[Path] = None,
) -> None:
    """
    Configure root logging once; console handlers of non-root ranks only show warnings.

    If `log_file` is given, a file handler at `level` is attached (once per path).
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)

    console_level = max(level, logging.WARNING) if (quiet_nonroot and rank != 0) else level
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            continue
        handler.setLevel(console_level)

    if log_file is not None:
        path = Path(log_file).resolve()
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path:
                return
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)
