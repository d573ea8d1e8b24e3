# php-build/phpbuild/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - php-build build pipeline

Main API:
  pipeline = BuildPipeline("5.6.16", "/opt/php/5.6.16")
  status = pipeline.run()   # 0, 127 or the failing step's exit status

Behavior:
  - Resolves the definition, opens the per-run BuildLog and loads plugins.d.
  - Runs the definition steps in order through the command registry; the
    install_package step drives download, configure, patch, compile, install
    and the php.ini fixups.
  - Fail-fast: the first fatal error runs `make clean` (best effort), prints
    an error banner with the tail of the log and returns the exit status.
  - Patch failures and per-extension failures are recorded, never fatal.
  - SIGINT and SIGTERM (handler scoped to run()) take the same cleanup path.
"""

from __future__ import annotations

import platform
import shutil
import signal
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from phpbuild import hooks
from phpbuild.buildconfig import BuildConfig, ConfigureFlag
from phpbuild.config import Config, get_config
from phpbuild.definitions import Definition, DefinitionRegistry
from phpbuild.errors import (
    BuildInterrupted,
    CompileFailure,
    ConfigureFailure,
    DefinitionError,
    DefinitionNotFound,
    InstallFailure,
    PhpBuildError,
)
from phpbuild.extensions import install_extensions, parse_extension_spec
from phpbuild.fetcher import Fetcher, Transport
from phpbuild.logging import BuildLog, get_logger, log_step
from phpbuild.patches import apply_libexec_fix, apply_patches
from phpbuild.plugins import CommandRegistry, PluginLoader
from phpbuild.runner import CommandRunner

logger = get_logger("buildsystem")

DARWIN_FLAGS = (
    ("--with-openssl", "/usr/local/opt/openssl"),
    ("--with-readline", "/usr/local/opt/readline"),
    ("--with-gettext", "/usr/local/opt/gettext"),
)
INI_FALLBACKS = ("php.ini-recommended", "php.ini-dist")
EXTENSION_DIR_LINE = 'extension_dir = "./"'


class Stage(str, Enum):
    INIT = "init"
    RESOLVE = "resolve"
    DOWNLOAD = "download"
    CONFIGURE = "configure"
    BEFORE_INSTALL_HOOK = "before_install_hook"
    APPLY_PATCHES = "apply_patches"
    COMPILE = "compile"
    INSTALL = "install"
    CLEAN_OBJECTS = "clean_objects"
    WRITE_INI = "write_ini"
    COMMENT_EXTENSION_DIR = "comment_extension_dir"
    AFTER_INSTALL_HOOK = "after_install_hook"
    INSTALL_EXTENSIONS = "install_extensions"
    DONE = "done"


# --- core definition commands ---
def configure_option(build: "BuildPipeline", *args: str) -> None:
    """
    configure_option: --with-foo=/usr
    configure_option: [--with-foo, /usr]
    configure_option: [-D, --with-foo]              (remove)
    configure_option: [-R, --with-foo, /opt/foo]    (replace)
    """
    if not args:
        raise DefinitionError("configure_option needs at least one argument.")
    if args[0] == "-D":
        if len(args) < 2:
            raise DefinitionError("configure_option -D needs a flag.")
        remove_configure_option(build, args[1])
        return
    if args[0] == "-R":
        if len(args) < 2:
            raise DefinitionError("configure_option -R needs a flag.")
        value = args[2] if len(args) > 2 else None
        build.config.replace_flag(args[1], args[1], value)
        return
    if len(args) == 1:
        flag = ConfigureFlag.parse(args[0])
    else:
        flag = ConfigureFlag(args[0], args[1])
    build.config.add_flag(flag.name, flag.value)


def remove_configure_option(build: "BuildPipeline", prefix: str) -> None:
    removed = build.config.remove_flag(prefix)
    logger.debug("removed configure flags %s", [str(f) for f in removed])


def replace_configure_option(build: "BuildPipeline", prefix: str, token: Optional[str] = None) -> None:
    """
    replace_configure_option: [--with-mysql=, --with-mysql]
    replace_configure_option: --with-openssl=/opt/openssl   (prefix is the flag name)
    """
    if token is None:
        token = prefix
        prefix = ConfigureFlag.parse(token).name
    flag = ConfigureFlag.parse(token)
    build.config.replace_flag(prefix, flag.name, flag.value)


def patch_file(build: "BuildPipeline", *names: str) -> None:
    for name in names:
        build.config.add_patch(name)


def install_package(build: "BuildPipeline", url: str) -> None:
    build.install_package(url)


CORE_COMMANDS = {
    "configure_option": configure_option,
    "remove_configure_option": remove_configure_option,
    "replace_configure_option": replace_configure_option,
    "patch_file": patch_file,
    "install_package": install_package,
}


def register_core_commands(registry: CommandRegistry) -> None:
    for name, func in CORE_COMMANDS.items():
        registry.register(name, func)


# --- main pipeline class ---
class BuildPipeline:
    def __init__(
        self,
        definition: str,
        prefix: Path,
        *,
        config: Optional[Config] = None,
        ini: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
        transport: Optional[Transport] = None,
        console: Optional[Console] = None,
        system: Optional[str] = None,
        lib64_dir: Path = Path("/usr/lib64"),
    ):
        self.definition_name = definition
        self.prefix = Path(prefix).absolute()
        self.settings = config or get_config()
        self.ini = ini
        self.console = console or Console(stderr=True)
        self.system = system or platform.system()
        self.lib64_dir = Path(lib64_dir)
        self._runner = runner
        self._transport = transport

        self.history: List[Stage] = []
        self.definitions = DefinitionRegistry(self.settings.definitions_dir)
        self.registry = CommandRegistry()
        self.definition: Optional[Definition] = None
        self.log: Optional[BuildLog] = None
        self.runner: Optional[CommandRunner] = None
        self.fetcher: Optional[Fetcher] = None
        self.triggers: Optional[hooks.TriggerManager] = None
        self.config: Optional[BuildConfig] = None
        self.source_dir: Optional[Path] = None
        self.patch_result: Dict[str, Any] = {"ok": True, "applied": [], "errors": []}
        self.extension_result: Dict[str, Any] = {"ok": True, "installed": [], "errors": []}
        self._armed = False

    # -------------------------
    # properties / helpers
    # -------------------------
    @property
    def key(self) -> str:
        """Cache key for the source tree: the definition's file name."""
        return Path(self.definition_name).name

    @property
    def share_dir(self) -> Path:
        return self.settings.share_dir

    def _enter(self, stage: Stage) -> None:
        self.history.append(stage)
        logger.debug("stage: %s", stage.value)

    def trigger_env(self) -> Dict[str, str]:
        return hooks.trigger_env(
            prefix=self.prefix,
            source_path=self.source_dir,
            root=self.settings.get("root"),
            definition=self.key,
        )

    # -------------------------
    # entry point
    # -------------------------
    def run(self) -> int:
        self._enter(Stage.INIT)
        self._enter(Stage.RESOLVE)
        try:
            definition_path = self.definitions.resolve(self.definition_name)
        except DefinitionNotFound as e:
            self.console.print(Text(f"php-build: {e}", style="red"))
            return e.exit_status

        self.log = BuildLog.for_definition(self.settings.log_dir, self.key).open()
        previous = self._install_sigterm()
        self._armed = True
        try:
            try:
                self._prepare(definition_path)
                self._execute()
            except KeyboardInterrupt:
                return self._fail(BuildInterrupted(int(signal.SIGINT)))
            except PhpBuildError as e:
                return self._fail(e)
            except Exception as e:
                logger.exception("unexpected error during build")
                return self._fail(e)
            self._armed = False
            log_step(logger, "Success", f"Built {self.key} successfully.")
            return 0
        finally:
            self._restore_sigterm(previous)
            self.log.close()

    def _install_sigterm(self):
        if threading.current_thread() is not threading.main_thread():
            return None

        def _on_sigterm(signum, frame):
            raise BuildInterrupted(signum)

        return signal.signal(signal.SIGTERM, _on_sigterm)

    def _restore_sigterm(self, previous) -> None:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    def _prepare(self, definition_path: Path) -> None:
        self.runner = self._runner or CommandRunner(self.log.stream)
        self.fetcher = Fetcher(self.settings.tmp_dir, self._transport)
        self.triggers = hooks.TriggerManager(self.share_dir, self.runner)
        self.config = BuildConfig.from_defaults(
            self.prefix,
            default_options=self.share_dir / "default_configure_options",
            extra_options=self.settings.get("build.configure_opts", []),
            make_arguments=self.settings.get("build.extra_make_arguments", ""),
            patches_dir=self.share_dir / "patches",
            ini=self.ini or self.settings.get("build.ini"),
            zts=bool(self.settings.get("build.zts")),
        )
        register_core_commands(self.registry)
        PluginLoader(self.registry).load_all(self.share_dir / "plugins.d")
        self.definition = self.definitions.load(str(definition_path))
        log_step(logger, "Info", f"Building {self.key} into {self.prefix}")
        logger.debug("log file: %s", self.log.path)

    def _execute(self) -> None:
        for step in self.definition.steps:
            logger.debug("step: %s %s", step.command, " ".join(step.args))
            self.registry.get(step.command)(self, *step.args)

        self._enter(Stage.AFTER_INSTALL_HOOK)
        self.triggers.run(hooks.AFTER_INSTALL, self.trigger_env(), cwd=self.source_dir or self.prefix)

        self._enter(Stage.INSTALL_EXTENSIONS)
        requests = parse_extension_spec(self.settings.get("build.install_extensions"))
        if requests:
            self.extension_result = install_extensions(self, requests)

        self._enter(Stage.DONE)

    # -------------------------
    # install_package stages
    # -------------------------
    def install_package(self, url: str) -> None:
        self._enter(Stage.DOWNLOAD)
        self.config.urls.append(url)
        artifact = self.fetcher.download(self.key, url)
        self.source_dir = artifact.source_dir

        self._enter(Stage.CONFIGURE)
        self.configure()

        self._enter(Stage.BEFORE_INSTALL_HOOK)
        self.triggers.run(hooks.BEFORE_INSTALL, self.trigger_env(), cwd=self.source_dir)

        self._enter(Stage.APPLY_PATCHES)
        if self.config.patches:
            self.patch_result = apply_patches(self.runner, self.source_dir, self.config.patches)

        self._enter(Stage.COMPILE)
        log_step(logger, "Compiling", self.source_dir)
        self.runner.run(["make", *self.config.make_args], cwd=self.source_dir, error=CompileFailure)

        self._enter(Stage.INSTALL)
        self.runner.run(["make", "install"], cwd=self.source_dir, error=InstallFailure)
        if self.system == "Darwin":
            self._rename_dsym()

        self._enter(Stage.CLEAN_OBJECTS)
        if self.settings.get("build.keep_object_files"):
            logger.debug("keeping object files in %s", self.source_dir)
        else:
            self._make_clean()

        self._enter(Stage.WRITE_INI)
        ini_path = self.write_ini()

        self._enter(Stage.COMMENT_EXTENSION_DIR)
        if ini_path is not None:
            comment_extension_dir(ini_path)

    def configure(self) -> None:
        src = self.source_dir
        if not (src / "configure").exists():
            log_step(logger, "Info", "No configure script found, running buildconf")
            self.runner.run(["./buildconf", "--force"], cwd=src, error=ConfigureFailure)
        if self.system == "Darwin":
            for flag, location in DARWIN_FLAGS:
                self.config.replace_flag(flag, flag, location)
        if self.config.zts:
            logger.warning("!!! Building with ZTS (--enable-maintainer-zts) enabled !!!")
            self.config.add_flag("--enable-maintainer-zts")
        if self.lib64_dir.is_dir() and not self.config.has_flag("--with-libdir"):
            self.config.add_flag("--with-libdir", "lib64")
        log_step(logger, "Configuring", " ".join(self.config.flag_tokens()))
        self.runner.run(["./configure", *self.config.configure_args()], cwd=src, error=ConfigureFailure)
        apply_libexec_fix(self.runner, src, self.prefix)

    def write_ini(self) -> Optional[Path]:
        etc = self.prefix / "etc"
        (etc / "conf.d").mkdir(parents=True, exist_ok=True)
        source = self._find_ini()
        if source is None:
            logger.warning("no php.ini template found in %s, skipping php.ini", self.source_dir)
            return None
        dest = etc / "php.ini"
        log_step(logger, "Info", f"Installing {source.name} as {dest}")
        shutil.copyfile(source, dest)
        return dest

    def _find_ini(self) -> Optional[Path]:
        ini = self.config.ini or "development"
        explicit = Path(ini)
        if explicit.is_file():
            return explicit
        for name in (f"php.ini-{ini}", *INI_FALLBACKS):
            candidate = self.source_dir / name
            if candidate.is_file():
                return candidate
        return None

    def _rename_dsym(self) -> None:
        for path in (self.prefix / "bin").glob("*.dSYM"):
            target = path.with_suffix("")
            logger.debug("renaming %s to %s", path, target)
            path.rename(target)

    def _make_clean(self) -> bool:
        if self.source_dir is None or not self.source_dir.is_dir():
            return False
        result = self.runner.run(["make", "clean"], cwd=self.source_dir, check=False)
        if result.returncode != 0:
            logger.warning("make clean failed (%s) in %s", result.returncode, self.source_dir)
            return False
        return True

    # -------------------------
    # failure handling
    # -------------------------
    def _fail(self, error: BaseException) -> int:
        status = getattr(error, "exit_status", 1)
        if not self._armed:
            return status
        self._armed = False
        code = getattr(error, "code", "E_UNEXPECTED")
        logger.debug("fatal %s (exit %s): %s", code, status, error)
        logger.warning("Cleaning up after failure")
        try:
            self._make_clean()
        except (PhpBuildError, OSError) as e:
            logger.warning("cleanup failed: %s", e)
        self.print_banner(error)
        return status

    def print_banner(self, error: BaseException) -> None:
        tail_lines = int(self.settings.get("logging.tail_lines", 10))
        self.console.print(Panel(Text(str(error)), title="BUILD ERROR", border_style="red", expand=False))
        if tail_lines:
            self.console.print(f"Here are the last {tail_lines} lines from the log:", markup=False)
            self.console.print(Text("\n".join(self.log.tail(tail_lines))), soft_wrap=True)
        self.console.print(f"The full Log is available at '{self.log.path}'.", markup=False, soft_wrap=True)


def comment_extension_dir(ini_path: Path) -> bool:
    """Prefix the default `extension_dir = "./"` line with ';'."""
    lines = ini_path.read_text(encoding="utf-8", errors="surrogateescape").splitlines(keepends=True)
    changed = False
    for i, line in enumerate(lines):
        if line.strip() == EXTENSION_DIR_LINE:
            lines[i] = ";" + line
            changed = True
    if changed:
        ini_path.write_text("".join(lines), encoding="utf-8", errors="surrogateescape")
    return changed
