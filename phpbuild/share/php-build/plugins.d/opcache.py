# php-build/share/php-build/plugins.d/opcache.py
"""Enable the opcache bundled with PHP >= 5.5 through conf.d/opcache.ini."""

from phpbuild.logging import get_logger, log_step

logger = get_logger("opcache")

OPCACHE_INI = """\
zend_extension={so}
opcache.enable=1
opcache.enable_cli=1
opcache.memory_consumption=128
opcache.interned_strings_buffer=8
opcache.max_accelerated_files=4000
opcache.fast_shutdown=1
"""


def enable_builtin_opcache(build):
    log_step(logger, "Info", "Enabling Opcache...")
    conf_d = build.prefix / "etc" / "conf.d"
    conf_d.mkdir(parents=True, exist_ok=True)
    so = "opcache.so"
    for candidate in sorted((build.prefix / "lib" / "php" / "extensions").glob("*/opcache.so")):
        so = str(candidate)
        break
    ini = conf_d / "opcache.ini"
    ini.write_text(OPCACHE_INI.format(so=so), encoding="utf-8")
    log_step(logger, "Info", "Done")
    return ini


def register(registry):
    registry.register("enable_builtin_opcache", enable_builtin_opcache)
