# php-build/phpbuild/extensions.py
"""
extensions.py - PHP_BUILD_INSTALL_EXTENSION handling

The variable holds whitespace separated ``name=version`` pairs; a version
starting with ``@`` names a source revision instead of a release:

    xdebug=2.9.0 redis=@abcdef

Each request is dispatched to the ``install_extension`` or
``install_extension_source`` command, so plugins may replace either one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from phpbuild.errors import BuildInterrupted, PhpBuildError
from phpbuild.logging import get_logger, log_step

logger = get_logger("extensions")


@dataclass(frozen=True)
class ExtensionRequest:
    name: str
    version: Optional[str] = None
    revision: Optional[str] = None

    @property
    def from_source(self) -> bool:
        return self.revision is not None

    def __str__(self) -> str:
        if self.from_source:
            return f"{self.name}=@{self.revision}"
        return f"{self.name}={self.version}"


def parse_extension_spec(text: Optional[str]) -> List[ExtensionRequest]:
    requests: List[ExtensionRequest] = []
    for entry in (text or "").split():
        name, sep, version = entry.partition("=")
        name = name.strip()
        if not sep or not name or not version or version == "@":
            logger.warning("ignoring malformed extension entry %r (expected name=version)", entry)
            continue
        if version.startswith("@"):
            requests.append(ExtensionRequest(name, revision=version[1:]))
        else:
            requests.append(ExtensionRequest(name, version=version))
    return requests


def install_extensions(build, requests: Iterable[ExtensionRequest]) -> Dict[str, Any]:
    """Install each request in turn; a failure is recorded and the next one still runs."""
    res: Dict[str, Any] = {"ok": True, "installed": [], "errors": []}
    for req in requests:
        log_step(logger, "Extension", f"Installing {req}")
        try:
            if req.from_source:
                build.registry.get("install_extension_source")(build, req.name, req.revision)
            else:
                build.registry.get("install_extension")(build, req.name, req.version)
        except BuildInterrupted:
            raise
        except PhpBuildError as e:
            logger.error("extension %s failed: %s", req, e)
            res["errors"].append({"extension": str(req), "code": e.code, "error": str(e)})
            res["ok"] = False
            continue
        res["installed"].append(str(req))
    return res
