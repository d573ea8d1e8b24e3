# php-build/phpbuild/runner.py
"""Blocking execution of external build commands with output sent to the build log."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable, Mapping, Optional, Type

from phpbuild.errors import CommandFailure
from phpbuild.logging import get_logger

logger = get_logger("runner")


@dataclass(frozen=True)
class RunResult:
    args: list
    returncode: int


class CommandRunner:
    """
    Runs one command at a time; no timeout, a hung tool hangs the build.

    stdout and stderr go to ``log_stream`` (the BuildLog handle) when set, so
    the console only shows the pipeline's own step messages.
    """

    def __init__(self, log_stream: Optional[IO[str]] = None):
        self.log_stream = log_stream

    def run(
        self,
        args: Iterable[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        check: bool = True,
        error: Type[CommandFailure] = CommandFailure,
        stdin: Optional[IO] = None,
    ) -> RunResult:
        argv = [str(a) for a in args]
        logger.debug("RUN: %s (cwd=%s)", shlex.join(argv), str(cwd) if cwd else None)
        merged_env = None
        if env is not None:
            merged_env = dict(os.environ)
            merged_env.update({k: str(v) for k, v in env.items()})
        if self.log_stream is not None:
            self.log_stream.flush()
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
                stdin=stdin,
                stdout=self.log_stream if self.log_stream is not None else subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
                check=False,
            )
            rc = proc.returncode
        except FileNotFoundError as e:
            # same status a shell reports for a missing executable
            rc = 127
            if cwd is not None and not Path(cwd).is_dir():
                logger.error("working directory does not exist: %s", cwd)
            else:
                logger.error("command not found: %s (%s)", argv[0], e)
        result = RunResult(args=argv, returncode=rc)
        if check and rc != 0:
            raise error(f"Command failed ({rc}): {shlex.join(argv)}", returncode=rc, argv=argv)
        return result
