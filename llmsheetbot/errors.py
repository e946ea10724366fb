"""Exception hierarchy shared across LLMSheetBot components."""

from __future__ import annotations


class SheetBotError(Exception):
    """Base class for all LLMSheetBot errors."""


class ConfigError(SheetBotError, ValueError):
    """Raised when configuration values are missing or invalid."""


class StructuralError(SheetBotError):
    """The document lacks the control rows required to discover work."""


class StoreError(SheetBotError):
    """A tabular store read or write failed."""


class ClaimDenied(SheetBotError):
    """Another identity holds an active lease on the cell."""

    def __init__(self, cell: str, holder: str | None = None, wait_seconds: float = 0.0) -> None:
        self.cell = cell
        self.holder = holder
        self.wait_seconds = wait_seconds
        message = f"{cell} is held by {holder or 'another worker'}"
        if wait_seconds:
            message += f" (retry in {wait_seconds:.0f}s)"
        super().__init__(message)


class WorkerFailure(SheetBotError):
    """The worker adapter could not produce an answer."""


class EmptyResult(SheetBotError):
    """The worker reported success but returned no usable text."""


class WriteBackFailure(SheetBotError):
    """The answer was produced but could not be written to the store."""


class RetryCeilingExceeded(SheetBotError):
    """A group exhausted its retry passes and processing must halt."""

    def __init__(self, group_id: str, retry_count: int) -> None:
        self.group_id = group_id
        self.retry_count = retry_count
        super().__init__(f"{group_id} reached the retry ceiling after {retry_count} pass(es)")


__all__ = [
    "SheetBotError",
    "ConfigError",
    "StructuralError",
    "StoreError",
    "ClaimDenied",
    "WorkerFailure",
    "EmptyResult",
    "WriteBackFailure",
    "RetryCeilingExceeded",
]
