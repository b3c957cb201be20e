"""Custom exceptions for vhost-user-lab."""

from __future__ import annotations

from typing import Optional


class WorkflowError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class SettingsError(WorkflowError):
    """Raised when the settings file is missing or malformed."""


class CommandError(WorkflowError):
    """Raised when a command run on a target exits with a non-zero status."""

    def __init__(
        self,
        command: str,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        target: Optional[str] = None,
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.target = target
        where = f" on {target}" if target else ""
        message = f"Command failed{where} (exit {returncode}): {command}"
        detail = (stderr or stdout or "").strip()
        if detail:
            message += f"\n  {detail}"
        super().__init__(message)


class TargetUnreachable(WorkflowError):
    """Raised when a remote target cannot be connected to."""


class WaitTimeout(WorkflowError):
    """Raised when a bounded wait expires before its condition holds."""
