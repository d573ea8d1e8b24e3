# php-build/share/php-build/plugins.d/apxs2.py
"""Build the Apache 2 module: with_apxs2 [path-to-apxs]"""

from phpbuild.logging import get_logger

logger = get_logger("apxs2")

DEFAULT_APXS = "/usr/sbin/apxs"


def with_apxs2(build, apxs: str = DEFAULT_APXS):
    logger.debug("building apache module with %s", apxs)
    build.config.replace_flag("--with-apxs2", "--with-apxs2", apxs)


COMMANDS = {
    "with_apxs2": with_apxs2,
}
