# php-build/phpbuild/errors.py
"""Typed error model for php-build with stable codes and process exit statuses."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Mapping, Optional

# exit status reserved for an unknown definition
DEFINITION_NOT_FOUND = 127


class ErrorCode(str, Enum):
    """Stable error identifiers, also written to the build log."""

    DEFINITION_NOT_FOUND = "E_DEFINITION_NOT_FOUND"
    DEFINITION = "E_DEFINITION"
    DOWNLOAD = "E_DOWNLOAD"
    EXTRACTION = "E_EXTRACTION"
    COMMAND = "E_COMMAND"
    CONFIGURE = "E_CONFIGURE"
    COMPILE = "E_COMPILE"
    INSTALL = "E_INSTALL"
    HOOK = "E_HOOK"
    PATCH = "E_PATCH"
    EXTENSION = "E_EXTENSION"
    PLUGIN = "E_PLUGIN"
    INTERRUPTED = "E_INTERRUPTED"


class PhpBuildError(Exception):
    """Base error carrying code, optional hint, context and the exit status to use."""

    default_code = ErrorCode.COMMAND
    exit_status = 1

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.code = (code or self.default_code).value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "exit_status": self.exit_status,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class DefinitionNotFound(PhpBuildError):
    default_code = ErrorCode.DEFINITION_NOT_FOUND
    exit_status = DEFINITION_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Definition {name} not found.",
            hint="Run `php-build --definitions` for the list of known definitions.",
            context={"definition": name},
        )
        self.name = name


class DefinitionError(PhpBuildError):
    default_code = ErrorCode.DEFINITION


class DownloadFailure(PhpBuildError):
    default_code = ErrorCode.DOWNLOAD


class ExtractionFailure(PhpBuildError):
    default_code = ErrorCode.EXTRACTION


class CommandFailure(PhpBuildError):
    """An external command exited non-zero; the process exits with the same status."""

    default_code = ErrorCode.COMMAND

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        argv: Optional[List[str]] = None,
        hint: Optional[str] = None,
    ) -> None:
        argv = list(argv or [])
        super().__init__(
            message,
            hint=hint,
            context={"command": " ".join(argv), "returncode": str(returncode)},
        )
        self.returncode = returncode
        self.argv = argv

    @property
    def exit_status(self) -> int:  # type: ignore[override]
        if self.returncode < 0:
            # killed by a signal
            return 128 - self.returncode
        return self.returncode or 1


class ConfigureFailure(CommandFailure):
    default_code = ErrorCode.CONFIGURE


class CompileFailure(CommandFailure):
    default_code = ErrorCode.COMPILE


class InstallFailure(CommandFailure):
    default_code = ErrorCode.INSTALL


class HookFailure(CommandFailure):
    default_code = ErrorCode.HOOK


class PatchFailure(CommandFailure):
    """Never raised by the pipeline; recorded in patch results instead."""

    default_code = ErrorCode.PATCH


class PatchNotFound(PhpBuildError):
    default_code = ErrorCode.PATCH


class ExtensionInstallFailure(PhpBuildError):
    default_code = ErrorCode.EXTENSION


class PluginError(PhpBuildError):
    default_code = ErrorCode.PLUGIN


class BuildInterrupted(PhpBuildError):
    default_code = ErrorCode.INTERRUPTED

    def __init__(self, signum: int) -> None:
        super().__init__(f"Build interrupted by signal {signum}.", context={"signal": str(signum)})
        self.signum = signum

    @property
    def exit_status(self) -> int:  # type: ignore[override]
        return 128 + self.signum


__all__ = [
    "BuildInterrupted",
    "CommandFailure",
    "CompileFailure",
    "ConfigureFailure",
    "DEFINITION_NOT_FOUND",
    "DefinitionError",
    "DefinitionNotFound",
    "DownloadFailure",
    "ErrorCode",
    "ExtensionInstallFailure",
    "ExtractionFailure",
    "HookFailure",
    "InstallFailure",
    "PatchFailure",
    "PatchNotFound",
    "PhpBuildError",
    "PluginError",
]
