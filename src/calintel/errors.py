from __future__ import annotations

from typing import List, Optional


class CalintelError(Exception):
    """Base class for errors raised by calintel."""


class InputError(CalintelError, ValueError):
    """Source text rejected before any parsing happens."""

    def __init__(self, reasons: List[str]) -> None:
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "Invalid input")


class RecurrenceParseError(CalintelError, ValueError):
    """A structured recurrence rule (or canonical rule string) is malformed."""


class SyncInProgressError(CalintelError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("Sync already in progress for this reconciler; retry later")


class ExternalCapabilityError(CalintelError, RuntimeError):
    """Failure raised by an injected collaborator (text parser or calendar port)."""

    def __init__(
        self,
        operation: str,
        cause: BaseException,
        sync_conflict_type: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.cause = cause
        # "permission_denied" / "quota_exceeded" when the remote calendar says so
        self.sync_conflict_type = sync_conflict_type
        super().__init__(f"{operation} failed: {cause}")
