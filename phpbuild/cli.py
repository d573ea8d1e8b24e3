#!/usr/bin/env python3
# php-build/phpbuild/cli.py
"""
php-build CLI

Usage:
  php-build [-i|--ini <env-or-file>] <definition> <prefix>
  php-build --definitions
  php-build -h|--help
  php-build -v|--version

- the build itself is delegated to buildsystem.BuildPipeline
- rich is used for error output; step messages go through the logger
"""

from __future__ import annotations

import sys
import argparse
from typing import List, Optional

from rich.console import Console

from phpbuild import __version__
from phpbuild import config as config_mod
from phpbuild import logging as log_mod
from phpbuild.buildsystem import BuildPipeline
from phpbuild.definitions import DefinitionRegistry
from phpbuild.errors import PhpBuildError

console = Console(stderr=True)
logger = log_mod.get_logger("cli")

USAGE = """\
Usage: php-build [-i|--ini <env>] [--definitions] [-h|--help] [-v|--version] <definition> <prefix>

Arguments:
    definition       Name of a builtin definition (see --definitions) or a path
                     to a definition file
    prefix           Directory PHP gets installed into

Options:
    -i|--ini         php.ini variant to install (development, production) or
                     the path to a php.ini file
    --definitions    List all builtin definitions
    -h|--help        Display this help and exit
    -v|--version     Display the version and exit

Environment:
    PHP_BUILD_DEBUG                  Print every command run
    PHP_BUILD_DEFINITION_PATH        Directory holding the definitions
    PHP_BUILD_CONFIGURE_OPTS         Extra ./configure flags
    PHP_BUILD_EXTRA_MAKE_ARGUMENTS   Extra arguments for make (e.g. -j4)
    PHP_BUILD_ZTS_ENABLE             Build a thread safe PHP
    PHP_BUILD_KEEP_OBJECT_FILES      Keep object files after the install
    PHP_BUILD_INSTALL_EXTENSION      Extensions to install, "name=version name=@revision"
    PHP_BUILD_TMPDIR                 Download and build directory
"""


class UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


# -----------------------
# Small pretty helpers
# -----------------------
def print_usage(msg: Optional[str] = None):
    if msg:
        console.print(f"[bold red]✖[/] {msg}")
    sys.stderr.write(USAGE)


def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")


# -----------------------
# CLI Implementation
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = _Parser(prog="php-build", add_help=False)
    ap.add_argument("-h", "--help", action="store_true")
    ap.add_argument("-v", "--version", action="store_true")
    ap.add_argument("--definitions", action="store_true")
    ap.add_argument("-i", "--ini", default=None)
    ap.add_argument("definition", nargs="?")
    ap.add_argument("prefix", nargs="?")
    return ap


def list_definitions(cfg: config_mod.Config) -> int:
    for name in DefinitionRegistry(cfg.definitions_dir).list():
        print(name)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    try:
        args = make_parser().parse_args(argv)
    except UsageError as e:
        print_usage(str(e))
        return 1

    if args.help:
        print_usage()
        return 0
    if args.version:
        print(f"php-build {__version__}")
        return 0

    cfg = config_mod.load()
    debug = cfg.get("debug") or str(cfg.get("logging.level", "")).upper() == "DEBUG"
    log_mod.configure(debug=bool(debug), color=bool(cfg.get("logging.color", True)))

    if args.definitions:
        return list_definitions(cfg)

    if not args.definition or not args.prefix:
        print_usage("definition and prefix are required")
        return 1

    try:
        return BuildPipeline(args.definition, args.prefix, config=cfg, ini=args.ini, console=console).run()
    except PhpBuildError as e:
        # raised before the build log exists (e.g. unwritable log dir)
        print_err(str(e))
        return e.exit_status
    except OSError as e:
        print_err(f"Command failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
