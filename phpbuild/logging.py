# php-build/phpbuild/logging.py
# -*- coding: utf-8 -*-
"""
php-build logging

Features:
 - Console color formatter on the user-facing stream (stdout)
 - Step records rendered as "[Step]: detail"
 - Per-run BuildLog file: one append-only handle shared by the file handler
   and every subordinate command (configure/make/hooks/patches)
 - Module tagging through LoggerAdapter (phpbuild_module)
"""

from __future__ import annotations

import sys
import time
import logging
import threading
from collections import deque
from pathlib import Path
from typing import IO, List, Optional

ROOT_LOGGER = "phpbuild"


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


class _StdoutHandler(logging.StreamHandler):
    """StreamHandler bound to whatever sys.stdout is at emit time."""

    def __init__(self):
        super().__init__(sys.stdout)

    def emit(self, record):
        self.stream = sys.stdout
        super().emit(record)


# ----------------------
# Per-run build log
# ----------------------
class BuildLog:
    """
    Append-only log file for one invocation.

    The same handle receives the pipeline's own records (through a file
    handler on the ``phpbuild`` logger) and the stdout/stderr of every
    external command, so the file reads in execution order.
    """

    FORMAT = "%(asctime)s %(levelname)s [%(phpbuild_module)s] %(message)s"

    def __init__(self, path: Path):
        self.path = Path(path)
        self.stream: Optional[IO[str]] = None
        self._handler: Optional[logging.Handler] = None

    @classmethod
    def for_definition(cls, log_dir: Path, definition: str, now: Optional[float] = None) -> "BuildLog":
        stamp = time.strftime("%Y%m%d%H%M%S", time.localtime(now))
        safe = Path(definition).name
        return cls(Path(log_dir) / f"php-build.{safe}.{stamp}.log")

    def open(self) -> "BuildLog":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.stream = open(self.path, "a", encoding="utf-8", buffering=1)
        handler = logging.StreamHandler(self.stream)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(self.FORMAT, datefmt="%H:%M:%S", defaults={"phpbuild_module": "-"}))
        logging.getLogger(ROOT_LOGGER).addHandler(handler)
        self._handler = handler
        return self

    def flush(self) -> None:
        if self.stream is not None:
            self.stream.flush()

    def close(self) -> None:
        if self._handler is not None:
            logging.getLogger(ROOT_LOGGER).removeHandler(self._handler)
            self._handler = None
        if self.stream is not None:
            self.stream.close()
            self.stream = None

    def tail(self, lines: int = 10) -> List[str]:
        self.flush()
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8", errors="replace") as fh:
            return [line.rstrip("\n") for line in deque(fh, maxlen=lines)]

    def __enter__(self) -> "BuildLog":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


# ----------------------
# PhpBuildLogger (singleton)
# ----------------------
class PhpBuildLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._root = logging.getLogger(ROOT_LOGGER)
        self._root.setLevel(logging.DEBUG)  # capture everything; handlers filter
        self._console: Optional[logging.Handler] = None
        self._inited = True

    def configure(self, *, debug: bool = False, color: bool = True) -> None:
        """Install (or replace) the console handler."""
        if self._console is not None:
            self._root.removeHandler(self._console)
        ch = _StdoutHandler()
        ch.setLevel(logging.DEBUG if debug else logging.INFO)
        ch.setFormatter(ColorFormatter("%(message)s", color=color and sys.stdout.isatty()))
        self._root.addHandler(ch)
        self._console = ch

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'phpbuild_module' into records."""
        return logging.LoggerAdapter(self._root, {"phpbuild_module": module_name})


def step_message(step: str, detail: object) -> str:
    return f"[{step}]: {detail}"


# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = PhpBuildLogger()


def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)


def configure(*, debug: bool = False, color: bool = True) -> None:
    _GLOBAL_LOGGER.configure(debug=debug, color=color)


def log_step(logger: logging.LoggerAdapter, step: str, detail: object, level: int = logging.INFO) -> None:
    logger.log(level, step_message(step, detail))
