# php-build/phpbuild/config.py
# -*- coding: utf-8 -*-
"""
php-build central configuration loader

Features:
- Read a YAML config file from the first existing candidate (PHP_BUILD_CONFIG, user, system)
- Merge with authoritative DEFAULTS, normalize paths and coerce booleans
- Apply PHP_BUILD_* environment overrides on top of the file values
- Validate structure (issues are logged as warnings, or raised with fatal=True)
- Provide dotted access via the Config dataclass (get_config(), load(), helpers)
"""

from __future__ import annotations

import os
import logging
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger("phpbuild.config")

PACKAGE_ROOT = Path(__file__).resolve().parent

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "debug": False,
    "root": str(PACKAGE_ROOT),
    "logging": {
        "level": "INFO",
        "color": True,
        "log_dir": "/tmp",
        "tail_lines": 10,
    },
    "build": {
        "tmp_dir": "/var/tmp/php-build",
        "configure_opts": [],
        "extra_make_arguments": "",
        "zts": False,
        "keep_object_files": False,
        "install_extensions": "",
        "ini": "development",
    },
    "definitions": {
        "path": None,
    },
}

_TRUE = ("1", "on", "yes", "true", "y")


def _as_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in _TRUE


# env var -> (config path, coercion); both configure-opts variants append
ENV_OVERRIDES: List[Tuple[str, Tuple[str, ...], Callable[[str], Any]]] = [
    ("PHP_BUILD_DEBUG", ("debug",), _as_bool),
    ("PHP_BUILD_ROOT", ("root",), str),
    ("PHP_BUILD_TMPDIR", ("build", "tmp_dir"), str),
    ("PHP_BUILD_DEFINITION_PATH", ("definitions", "path"), str),
    ("PHP_BUILD_EXTRA_MAKE_ARGUMENTS", ("build", "extra_make_arguments"), str),
    ("PHP_BUILD_ZTS_ENABLE", ("build", "zts"), _as_bool),
    ("PHP_BUILD_KEEP_OBJECT_FILES", ("build", "keep_object_files"), _as_bool),
    ("PHP_BUILD_INSTALL_EXTENSION", ("build", "install_extensions"), str),
]
CONFIGURE_OPTS_ENV = ("PHP_BUILD_CONFIGURE_OPTS", "CONFIGURE_OPTS")


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # DEFAULTS + file + env
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    # paths derived from the root/share layout
    @property
    def share_dir(self) -> Path:
        return Path(self.get("root")) / "share" / "php-build"

    @property
    def definitions_dir(self) -> Path:
        explicit = self.get("definitions.path")
        return Path(explicit) if explicit else self.share_dir / "definitions"

    @property
    def tmp_dir(self) -> Path:
        return Path(self.get("build.tmp_dir"))

    @property
    def log_dir(self) -> Path:
        return Path(self.get("logging.log_dir"))


_CONFIG: Optional[Config] = None


# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def _set_path(cfg: Dict[str, Any], keys: Tuple[str, ...], value: Any) -> None:
    ref = cfg
    for k in keys[:-1]:
        ref = ref.setdefault(k, {})
    ref[keys[-1]] = value


def _find_candidates(explicit: Optional[str], environ: Mapping[str, str]) -> List[Path]:
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    env = environ.get("PHP_BUILD_CONFIG")
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.home() / ".config" / "php-build" / "config.yaml",
        Path("/etc") / "php-build" / "config.yaml",
    ])
    return candidates


def _load_file(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config: {path} must contain a mapping at top level")
    return data


def _apply_env(cfg: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    out = deepcopy(cfg)
    for var, keys, coerce in ENV_OVERRIDES:
        if environ.get(var):
            _set_path(out, keys, coerce(environ[var]))
    opts = out["build"].get("configure_opts") or []
    opts = [opts] if isinstance(opts, str) else list(opts)
    for var in CONFIGURE_OPTS_ENV:
        if environ.get(var):
            opts.append(environ[var])
    out["build"]["configure_opts"] = opts
    return out


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce booleans/ints."""
    out = deepcopy(cfg)
    out["root"] = _expand_path(out.get("root"))
    out["build"]["tmp_dir"] = _expand_path(out["build"].get("tmp_dir"))
    out["logging"]["log_dir"] = _expand_path(out["logging"].get("log_dir"))
    if out["definitions"].get("path"):
        out["definitions"]["path"] = _expand_path(out["definitions"]["path"])
    for key in ("zts", "keep_object_files"):
        out["build"][key] = _as_bool(out["build"].get(key, False))
    out["debug"] = _as_bool(out.get("debug", False))
    out["logging"]["tail_lines"] = int(out["logging"].get("tail_lines", 10))
    out["build"]["configure_opts"] = [str(o) for o in out["build"]["configure_opts"]]
    return out


def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    if not isinstance(cfg["build"].get("extra_make_arguments", ""), str):
        issues.append("build.extra_make_arguments must be a string")
    if not isinstance(cfg["build"].get("install_extensions", ""), str):
        issues.append("build.install_extensions must be a string")
    if cfg["logging"].get("tail_lines", 0) < 0:
        issues.append("logging.tail_lines must be >= 0")
    return (len(issues) == 0, issues)


# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str], environ: Mapping[str, str]) -> Optional[Path]:
    for p in _find_candidates(explicit, environ):
        if p.is_file():
            return p
    return None


def load(
    explicit_path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    fatal: bool = False,
) -> Config:
    """
    Load defaults, the first config file found and environment overrides.
    If fatal=True then structural validation failures raise.
    """
    global _CONFIG
    environ = os.environ if environ is None else environ
    cfg_path = _find_path(explicit_path, environ)
    raw: Dict[str, Any] = {}
    if cfg_path:
        raw = _load_file(cfg_path)
    merged = _apply_env(_deep_merge(DEFAULTS, raw), environ)
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            logger.error(msg)
            raise ValueError(msg)
        logger.warning(msg)
    _CONFIG = Config(raw=raw, merged=normalized, path=cfg_path)
    logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
    return _CONFIG


def get_config() -> Config:
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load()
    return _CONFIG
