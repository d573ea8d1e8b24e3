# php-build/phpbuild/hooks.py

import os
from pathlib import Path
from typing import Dict, List, Mapping

from phpbuild.errors import HookFailure
from phpbuild.logging import get_logger, log_step
from phpbuild.runner import CommandRunner

logger = get_logger("hooks")

BEFORE_INSTALL = "before-install"
AFTER_INSTALL = "after-install"
EVENTS = (BEFORE_INSTALL, AFTER_INSTALL)


class TriggerManager:
    """
    Runs the trigger scripts found in <share>/<event>.d in name order.

    Executable files are run directly, anything else through ``sh``. A
    trigger exiting non-zero stops the build.
    """

    def __init__(self, share_dir: Path, runner: CommandRunner):
        self.share_dir = Path(share_dir)
        self.runner = runner

    # -----------------------------
    # Discovery
    # -----------------------------
    def trigger_dir(self, event: str) -> Path:
        if event not in EVENTS:
            raise ValueError(f"unknown trigger event: {event}")
        return self.share_dir / f"{event}.d"

    def list(self, event: str) -> List[Path]:
        hooks_dir = self.trigger_dir(event)
        if not hooks_dir.is_dir():
            return []
        return [
            hooks_dir / fname
            for fname in sorted(os.listdir(hooks_dir))
            if not fname.startswith(".") and (hooks_dir / fname).is_file()
        ]

    # -----------------------------
    # Execution
    # -----------------------------
    def run(self, event: str, context: Mapping[str, str], cwd: Path = None) -> List[str]:
        hooks = self.list(event)
        if not hooks:
            logger.debug("no %s triggers", event)
            return []
        ran: List[str] = []
        for hook in hooks:
            log_step(logger, "Triggers", f"Running {event} trigger {hook.name}")
            if os.access(hook, os.X_OK):
                argv = [str(hook)]
            else:
                argv = ["sh", str(hook)]
            self.runner.run(argv, cwd=cwd, env=context, error=HookFailure)
            ran.append(hook.name)
        return ran


def trigger_env(*, prefix: Path, source_path: Path, root: Path, definition: str) -> Dict[str, str]:
    return {
        "PREFIX": str(prefix),
        "SOURCE_PATH": str(source_path) if source_path else "",
        "PHP_BUILD_ROOT": str(root),
        "DEFINITION": definition,
    }
