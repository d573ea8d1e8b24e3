"""Shared test fixtures: a recording command runner, a fake HTTP backend and tarball helpers."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest
import yaml

from phpbuild import config as config_mod
from phpbuild.errors import CommandFailure
from phpbuild.runner import RunResult


class RecordingRunner:
    """Stands in for CommandRunner; records argv/cwd and fails on request."""

    def __init__(self, failures: Optional[Dict[str, Union[int, BaseException, Callable[[], int]]]] = None):
        self.failures = dict(failures or {})
        self.calls: List[Tuple[List[str], Optional[Path]]] = []
        self.envs: List[Optional[dict]] = []
        self.log_stream = None

    def run(self, args, *, cwd=None, env=None, check=True, error=CommandFailure, stdin=None):
        argv = [str(a) for a in args]
        self.calls.append((argv, Path(cwd) if cwd else None))
        self.envs.append(dict(env) if env is not None else None)
        outcome = self.failures.get(" ".join(argv), 0)
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        if check and outcome != 0:
            raise error(f"Command failed ({outcome})", returncode=outcome, argv=argv)
        return RunResult(args=argv, returncode=outcome)

    def argvs(self) -> List[List[str]]:
        return [argv for argv, _ in self.calls]


class FakeBackend:
    name = "fake"

    def __init__(self, payloads: Dict[str, bytes], headers: Optional[Dict[str, str]] = None, head_rc: int = 0):
        self.payloads = payloads
        self.headers = headers or {}
        self.head_rc = head_rc
        self.heads: List[str] = []
        self.gets: List[str] = []

    def head(self, url: str):
        self.heads.append(url)
        lines = ["HTTP/1.1 200 OK"] + [f"{k}: {v}" for k, v in self.headers.items()]
        return self.head_rc, "\r\n".join(lines) + "\r\n"

    def get(self, url: str, dest: Path):
        self.gets.append(url)
        if url not in self.payloads:
            Path(dest).write_bytes(b"partial")
            return 22, "The requested URL returned error: 404"
        Path(dest).write_bytes(self.payloads[url])
        return 0, ""


def make_tarball(top: str, files: Dict[str, str], mode: str = "w:gz") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        dir_info = tarfile.TarInfo(top)
        dir_info.type = tarfile.DIRTYPE
        dir_info.mode = 0o755
        tar.addfile(dir_info)
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def recording_runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def settings(tmp_path: Path) -> config_mod.Config:
    """Config rooted entirely under tmp_path, with no environment overrides."""
    root = tmp_path / "root"
    (root / "share" / "php-build").mkdir(parents=True)
    definitions = tmp_path / "definitions"
    definitions.mkdir()
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(
        yaml.safe_dump(
            {
                "root": str(root),
                "logging": {"log_dir": str(tmp_path / "logs"), "color": False},
                "build": {"tmp_dir": str(tmp_path / "build")},
                "definitions": {"path": str(definitions)},
            }
        ),
        encoding="utf-8",
    )
    return config_mod.load(str(cfg_file), environ={})
