from __future__ import annotations


class LauncherError(RuntimeError):
    """Base error: every failure keeps the output captured so far."""

    def __init__(self, message: str, *, log: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.log = log


class LaunchError(LauncherError):
    """The spawn syscall itself failed."""


class ResolutionError(LaunchError):
    """No usable binary: only the literal command name was left and the OS could not find it."""


class FatalOutputError(LauncherError):
    """The child printed a fatal marker or exited before becoming ready."""

    def __init__(self, message: str, *, log: str = "", returncode: int | None = None) -> None:
        super().__init__(message, log=log)
        self.returncode = returncode


class ReadinessTimeoutError(LauncherError, TimeoutError):
    """No readiness signal within the budget."""

    def __init__(self, message: str, *, log: str = "", last_error: str | None = None) -> None:
        super().__init__(message, log=log)
        self.last_error = last_error


class ParseError(LauncherError):
    """Descriptor or output is structurally invalid or lacks a required field."""

    def __init__(self, message: str, *, field: str | None = None, log: str = "") -> None:
        super().__init__(message, log=log)
        self.field = field


class TeardownError(LauncherError):
    """Signal delivery or the clean subcommand failed for a reason other than 'already gone'."""


__all__ = [
    "FatalOutputError",
    "LaunchError",
    "LauncherError",
    "ParseError",
    "ReadinessTimeoutError",
    "ResolutionError",
    "TeardownError",
]
