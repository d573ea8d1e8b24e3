# php-build/share/php-build/plugins.d/extension.py
"""
PECL / source extension installer

Commands:
- install_extension <name> <version>       release tarball from pecl.php.net
- install_extension_source <name> <rev>    git checkout of a known repository
- install_xdebug <version>
- install_xdebug_master
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from phpbuild.errors import ExtensionInstallFailure
from phpbuild.logging import get_logger, log_step

logger = get_logger("extension")

PECL_URL = "https://pecl.php.net/get/{name}-{version}.tgz"

REPOSITORIES = {
    "xdebug": "https://github.com/xdebug/xdebug.git",
    "redis": "https://github.com/phpredis/phpredis.git",
    "apcu": "https://github.com/krakjoe/apcu.git",
    "imagick": "https://github.com/Imagick/imagick.git",
}

ZEND_EXTENSIONS = ("xdebug", "opcache")


def _extension_so(prefix: Path, name: str) -> str:
    # older releases need the absolute path for zend_extension
    for candidate in sorted((prefix / "lib" / "php" / "extensions").glob(f"*/{name}.so")):
        return str(candidate)
    return f"{name}.so"


def write_extension_ini(prefix: Path, name: str) -> Path:
    conf_d = prefix / "etc" / "conf.d"
    conf_d.mkdir(parents=True, exist_ok=True)
    ini = conf_d / f"{name}.ini"
    if name in ZEND_EXTENSIONS:
        line = f"zend_extension={_extension_so(prefix, name)}"
    else:
        line = f"extension={name}.so"
    ini.write_text(line + "\n", encoding="utf-8")
    logger.debug("wrote %s", ini)
    return ini


def _build_extension(build, name: str, source_dir: Path) -> None:
    bin_dir = build.prefix / "bin"
    log_step(logger, name, f"Compiling {name} in {source_dir}")
    build.runner.run([str(bin_dir / "phpize")], cwd=source_dir)
    build.runner.run(
        ["./configure", f"--with-php-config={bin_dir / 'php-config'}"],
        cwd=source_dir,
    )
    build.runner.run(["make"], cwd=source_dir)
    build.runner.run(["make", "install"], cwd=source_dir)
    log_step(logger, name, f"Installing {name} configuration in {build.prefix / 'etc' / 'conf.d'}")
    write_extension_ini(build.prefix, name)
    log_step(logger, name, "Cleaning up.")
    build.runner.run(["make", "clean"], cwd=source_dir, check=False)


def install_extension(build, name: str, version: Optional[str] = None) -> None:
    if not version:
        raise ExtensionInstallFailure(f"No version given for extension {name}.", context={"extension": name})
    url = PECL_URL.format(name=name, version=version)
    log_step(logger, name, f"Downloading {url}")
    artifact = build.fetcher.download(f"{name}-{version}", url, kind="gzip")
    _build_extension(build, name, artifact.source_dir)


def install_extension_source(build, name: str, revision: str = "master") -> None:
    repo = REPOSITORIES.get(name)
    if repo is None:
        raise ExtensionInstallFailure(
            f"Don't know where to find the source of {name}.",
            hint=f"Known repositories: {', '.join(sorted(REPOSITORIES))}",
            context={"extension": name, "revision": revision},
        )
    source_dir = build.fetcher.source_dir_for(f"{name}-{revision}")
    if source_dir.is_dir():
        log_step(logger, name, f"Updating source in {source_dir}")
        build.runner.run(["git", "fetch", "origin"], cwd=source_dir)
    else:
        log_step(logger, name, f"Cloning {repo}")
        source_dir.parent.mkdir(parents=True, exist_ok=True)
        build.runner.run(["git", "clone", repo, str(source_dir)])
    build.runner.run(["git", "checkout", revision], cwd=source_dir)
    _build_extension(build, name, source_dir)


def install_xdebug(build, version: str) -> None:
    install_extension(build, "xdebug", version)


def install_xdebug_master(build) -> None:
    install_extension_source(build, "xdebug", "master")


def register(registry):
    registry.register("install_extension", install_extension)
    registry.register("install_extension_source", install_extension_source)
    registry.register("install_xdebug", install_xdebug)
    registry.register("install_xdebug_master", install_xdebug_master)
