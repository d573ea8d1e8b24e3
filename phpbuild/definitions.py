# php-build/phpbuild/definitions.py
"""
definitions.py - locate, list and parse build definitions

A definition is a YAML file named after the version it builds, holding an
ordered list of steps:

    - configure_option: --with-mcrypt=/usr
    - patch_file: php-5.3-libxml2.patch
    - install_package: https://secure.php.net/distributions/php-5.3.29.tar.bz2
    - install_xdebug: 2.2.7
    - enable_builtin_opcache

A step is a bare command name or a single-key mapping whose value is one
argument or a list of arguments. Steps are dispatched through the command
registry (see plugins.py).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Tuple

import yaml

from phpbuild.errors import DefinitionError, DefinitionNotFound
from phpbuild.logging import get_logger

logger = get_logger("definitions")

_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")


@dataclass(frozen=True)
class Step:
    command: str
    args: Tuple[str, ...] = ()


@dataclass
class Definition:
    name: str
    path: Path
    steps: List[Step] = field(default_factory=list)


def version_key(name: str) -> Tuple[Tuple[int, Any], ...]:
    """Sort key comparing numeric components as numbers and letter runs after them."""
    key = []
    for token in _TOKEN_RE.findall(name):
        if token.isdigit():
            key.append((0, int(token)))
        else:
            key.append((1, token.lower()))
    return tuple(key)


def _parse_step(raw: Any, index: int, path: Path) -> Step:
    if isinstance(raw, str):
        return Step(raw.strip())
    if isinstance(raw, dict) and len(raw) == 1:
        command, value = next(iter(raw.items()))
        if value is None or value == "":
            args: Tuple[str, ...] = ()
        elif isinstance(value, list):
            args = tuple(str(v) for v in value)
        elif isinstance(value, (dict, set)):
            raise DefinitionError(
                f"Step {index} in {path.name} has an unsupported argument type.",
                context={"definition": str(path), "step": str(raw)},
            )
        else:
            args = (str(value),)
        return Step(str(command), args)
    raise DefinitionError(
        f"Step {index} in {path.name} must be a command name or a single-key mapping.",
        context={"definition": str(path), "step": str(raw)},
    )


def parse_definition(name: str, path: Path) -> Definition:
    try:
        # BaseLoader keeps every scalar a string, so "5.10" stays "5.10"
        data = yaml.load(Path(path).read_text(encoding="utf-8"), Loader=yaml.BaseLoader)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Definition {name} is not valid YAML: {e}", context={"definition": str(path)}) from e
    if data is None:
        data = []
    if not isinstance(data, list):
        raise DefinitionError(
            f"Definition {name} must be a list of steps.",
            context={"definition": str(path)},
        )
    steps = [_parse_step(raw, i, Path(path)) for i, raw in enumerate(data, 1)]
    return Definition(name=name, path=Path(path), steps=steps)


class DefinitionRegistry:
    def __init__(self, definitions_dir: Path):
        self.definitions_dir = Path(definitions_dir)

    def resolve(self, name: str) -> Path:
        """An existing file path wins over a builtin definition of the same name."""
        candidate = Path(name)
        if candidate.is_file():
            return candidate
        builtin = self.definitions_dir / name
        if builtin.is_file():
            return builtin
        raise DefinitionNotFound(name)

    def list(self) -> List[str]:
        if not self.definitions_dir.is_dir():
            logger.debug("definitions dir %s does not exist", self.definitions_dir)
            return []
        names = [
            entry.name
            for entry in os.scandir(self.definitions_dir)
            if entry.is_file() and not entry.name.startswith(".")
        ]
        return sorted(names, key=version_key)

    def load(self, name: str) -> Definition:
        path = self.resolve(name)
        definition = parse_definition(Path(name).name, path)
        logger.debug("loaded definition %s from %s (%d steps)", definition.name, path, len(definition.steps))
        return definition
