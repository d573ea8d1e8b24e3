# php-build/phpbuild/patches.py
"""
patches.py - patch application for php-build

Responsibilities:
- Apply the patches registered on the BuildConfig, in registration order,
  with `patch -p0 -N` inside the source tree.
- A patch that fails to apply is logged and recorded; it never stops the build.
- Apply the built-in Makefile fix that points the Apache module install
  path at <prefix>/libexec.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable

from phpbuild.errors import PatchFailure
from phpbuild.logging import get_logger, log_step
from phpbuild.runner import CommandRunner

logger = get_logger("patches")

LIBEXEC_PATCH_NAME = ".php-build-libexec.diff"

_LIBEXEC_DIFF = """\
--- Makefile
+++ Makefile
@@ -1 +1 @@
-INSTALL_IT = $(mkinstalldirs) '$(INSTALL_ROOT)/usr/libexec/apache2' && $(mkinstalldirs) '$(INSTALL_ROOT)/private/etc/apache2' && /usr/sbin/apxs -S LIBEXECDIR='$(INSTALL_ROOT)/usr/libexec/apache2' -S SYSCONFDIR='$(INSTALL_ROOT)/private/etc/apache2' -i -a -n php5 libs/libphp5.so
+INSTALL_IT = $(mkinstalldirs) '{libexec}/apache2' && $(mkinstalldirs) '$(INSTALL_ROOT)/private/etc/apache2' && /usr/sbin/apxs -S LIBEXECDIR='{libexec}/apache2' -S SYSCONFDIR='$(INSTALL_ROOT)/private/etc/apache2' -i -a -n php5 libs/libphp5.so
"""


def libexec_diff(prefix: Path) -> str:
    return _LIBEXEC_DIFF.replace("{libexec}", str(Path(prefix) / "libexec"))


def _patch_argv(patch_path: Path):
    return ["patch", "-p0", "-N", "-i", str(patch_path)]


def apply_patches(runner: CommandRunner, source_dir: Path, patches: Iterable[Path]) -> Dict[str, Any]:
    """
    Apply every patch in order. Returns {"ok", "applied", "errors"}; "ok" is
    False when at least one patch failed, but the caller carries on.
    """
    res: Dict[str, Any] = {"ok": True, "applied": [], "errors": []}
    for patch in patches:
        patch = Path(patch)
        log_step(logger, "Patching", f"Applying patch {patch.name}")
        try:
            runner.run(_patch_argv(patch), cwd=source_dir, error=PatchFailure)
        except PatchFailure as e:
            logger.warning("patch %s did not apply (%s), continuing", patch.name, e.returncode)
            res["errors"].append({"patch": str(patch), "returncode": e.returncode})
            res["ok"] = False
            continue
        res["applied"].append(str(patch))
    return res


def apply_libexec_fix(runner: CommandRunner, source_dir: Path, prefix: Path) -> bool:
    """Rewrite the Makefile's libexec install line; a mismatch is ignored."""
    diff_path = Path(source_dir) / LIBEXEC_PATCH_NAME
    diff_path.write_text(libexec_diff(prefix), encoding="utf-8")
    try:
        result = runner.run(_patch_argv(diff_path), cwd=source_dir, check=False)
    finally:
        diff_path.unlink()
    if result.returncode != 0:
        logger.debug("libexec Makefile fix not applicable (%s)", result.returncode)
        return False
    return True
