# php-build/phpbuild/plugins.py
"""
plugins.py - command registry and plugins.d loader

Definition steps are dispatched by name through a CommandRegistry. The core
registers the configuration commands; every ``*.py`` file in a plugins
directory may add more. A plugin module either defines

    def register(registry): registry.register("with_apxs2", with_apxs2)

or a ``COMMANDS = {"name": callable}`` mapping. Commands are called as
``command(build, *args)`` where ``build`` is the running BuildPipeline.
"""

from __future__ import annotations

import importlib.util
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, Iterator, List

from phpbuild.errors import DefinitionError, PluginError
from phpbuild.logging import get_logger, log_step

logger = get_logger("plugins")

Command = Callable[..., object]


class CommandRegistry:
    def __init__(self):
        self._commands: Dict[str, Command] = {}
        self._origins: Dict[str, str] = {}

    def register(self, name: str, func: Command, origin: str = "core") -> None:
        if not callable(func):
            raise PluginError(f"Command {name} from {origin} is not callable.")
        if name in self._commands:
            logger.debug("command %s from %s overrides %s", name, origin, self._origins[name])
        self._commands[name] = func
        self._origins[name] = origin

    def get(self, name: str) -> Command:
        try:
            return self._commands[name]
        except KeyError:
            raise DefinitionError(
                f"Unknown command {name}.",
                hint="Check the definition for typos or install the plugin that provides it.",
                context={"command": name},
            ) from None

    def origin(self, name: str) -> str:
        return self._origins.get(name, "")

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def names(self) -> List[str]:
        return sorted(self._commands)


@dataclass
class PluginLoadResult:
    loaded: List[str] = field(default_factory=list)
    missing: bool = False


def _load_plugin_module_from_file(py_file: Path, *, module_name: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(module_name, py_file)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load plugin module from {py_file}")
    mod = importlib.util.module_from_spec(spec)
    # dataclasses in the plugin look their module up in sys.modules
    sys.modules[module_name] = mod
    try:
        spec.loader.exec_module(mod)
    except Exception:
        sys.modules.pop(module_name, None)
        raise
    return mod


class PluginLoader:
    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    def _register_module(self, mod: ModuleType, origin: Path) -> None:
        register = getattr(mod, "register", None)
        if callable(register):
            register(_OriginRegistry(self.registry, origin.stem))
            return
        commands = getattr(mod, "COMMANDS", None)
        if isinstance(commands, dict):
            for name, func in commands.items():
                self.registry.register(name, func, origin=origin.stem)
            return
        raise PluginError(
            f"Plugin {origin.name} must define register(registry) or COMMANDS.",
            context={"plugin": str(origin)},
        )

    def load_all(self, plugins_dir: Path) -> PluginLoadResult:
        """Load every plugin file in directory order; a missing directory is a no-op."""
        plugins_dir = Path(plugins_dir)
        result = PluginLoadResult()
        if not plugins_dir.is_dir():
            logger.debug("plugins dir %s does not exist, nothing to load", plugins_dir)
            result.missing = True
            return result
        for fname in os.listdir(plugins_dir):
            if not fname.endswith(".py") or fname.startswith("_"):
                continue
            py_file = plugins_dir / fname
            module_name = f"phpbuild_plugin_{py_file.stem}_{abs(hash(str(py_file)))}"
            try:
                mod = _load_plugin_module_from_file(py_file, module_name=module_name)
            except Exception as e:
                raise PluginError(f"Failed to load plugin {py_file}: {e}", context={"plugin": str(py_file)}) from e
            self._register_module(mod, py_file)
            log_step(logger, "Info", f"Loaded {py_file.stem} plugin.")
            result.loaded.append(py_file.stem)
        return result


class _OriginRegistry:
    """Registry view handed to a plugin's register(); tags every command with the plugin name."""

    def __init__(self, registry: CommandRegistry, origin: str):
        self._registry = registry
        self._origin = origin

    def register(self, name: str, func: Command) -> None:
        self._registry.register(name, func, origin=self._origin)

    def __contains__(self, name: object) -> bool:
        return name in self._registry
