# php-build/phpbuild/buildconfig.py
"""
buildconfig.py - mutable build configuration edited by definitions and plugins

The configure flag list is order-sensitive: later flags on the configure
command line override earlier ones, so flags are never sorted or
deduplicated. The only edits are append, prefix removal and replace
(removal followed by append).
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from phpbuild.errors import PatchNotFound
from phpbuild.logging import get_logger

logger = get_logger("buildconfig")


@dataclass(frozen=True)
class ConfigureFlag:
    name: str
    value: Optional[str] = None

    @classmethod
    def parse(cls, token: str) -> "ConfigureFlag":
        name, sep, value = token.partition("=")
        return cls(name, value if sep else None)

    def __str__(self) -> str:
        return self.name if self.value is None else f"{self.name}={self.value}"


def read_options_file(path: Path) -> List[str]:
    """Whitespace/newline separated flag list; '#' starts a comment."""
    tokens: List[str] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            tokens.extend(shlex.split(line))
    return tokens


@dataclass
class BuildConfig:
    prefix: Path
    flags: List[ConfigureFlag] = field(default_factory=list)
    patches: List[Path] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    ini: Optional[str] = None
    zts: bool = False
    make_args: List[str] = field(default_factory=list)
    patches_dir: Optional[Path] = None

    @classmethod
    def from_defaults(
        cls,
        prefix: Path,
        *,
        default_options: Optional[Path] = None,
        extra_options: Iterable[str] = (),
        make_arguments: str = "",
        patches_dir: Optional[Path] = None,
        ini: Optional[str] = None,
        zts: bool = False,
    ) -> "BuildConfig":
        cfg = cls(
            prefix=Path(prefix),
            ini=ini,
            zts=zts,
            make_args=shlex.split(make_arguments or ""),
            patches_dir=patches_dir,
        )
        if default_options is not None and Path(default_options).is_file():
            for token in read_options_file(default_options):
                cfg.add_flag(*_split(token))
        for opts in extra_options:
            for token in shlex.split(opts):
                cfg.add_flag(*_split(token))
        return cfg

    # -------------------------
    # configure flags
    # -------------------------
    def add_flag(self, name: str, value: Optional[str] = None) -> None:
        self.flags.append(ConfigureFlag(name, value))

    def remove_flag(self, prefix: str) -> List[ConfigureFlag]:
        """Drop every flag whose rendered token starts with prefix; returns the removed flags."""
        removed = [f for f in self.flags if str(f).startswith(prefix)]
        self.flags = [f for f in self.flags if not str(f).startswith(prefix)]
        return removed

    def replace_flag(self, prefix: str, name: str, value: Optional[str] = None) -> None:
        self.remove_flag(prefix)
        self.add_flag(name, value)

    def has_flag(self, prefix: str) -> bool:
        return any(str(f).startswith(prefix) for f in self.flags)

    def flag_tokens(self) -> List[str]:
        return [str(f) for f in self.flags]

    def configure_args(self) -> List[str]:
        prefix = self.prefix
        return [
            f"--prefix={prefix}",
            f"--exec-prefix={prefix}",
            f"--with-config-file-path={prefix / 'etc'}",
            f"--with-config-file-scan-dir={prefix / 'etc' / 'conf.d'}",
            f"--libexecdir={prefix / 'libexec'}",
            *self.flag_tokens(),
        ]

    # -------------------------
    # patches
    # -------------------------
    def add_patch(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_file():
            if self.patches_dir is None:
                raise PatchNotFound(f"Patch {path} not found.", context={"patch": str(path)})
            candidate = self.patches_dir / path
            if not candidate.is_file():
                raise PatchNotFound(
                    f"Patch {path} not found.",
                    context={"patch": str(path), "patches_dir": str(self.patches_dir)},
                )
        self.patches.append(candidate)
        logger.debug("patch registered: %s", candidate)
        return candidate


def _split(token: str):
    flag = ConfigureFlag.parse(token)
    return flag.name, flag.value
