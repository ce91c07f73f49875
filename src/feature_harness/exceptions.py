"""Exception types raised by the harness core.

Errors local to a single session (extraction and collaborator failures)
are recoverable; errors that mean the workspace is unusable (missing or
unreadable task store) abort the whole run.
"""

from pathlib import Path
from typing import Optional


class HarnessError(Exception):
    """Base class for all harness errors."""


class StoreNotFoundError(HarnessError):
    """No task list exists at the expected location."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Task list not found: {self.path}")


class TaskStoreError(HarnessError):
    """The task list could not be read or written."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message)


class ExtractionError(HarnessError):
    """No strategy recovered a valid task record from model output.

    The raw text is kept on the exception because it is the only
    diagnostic available for tuning future prompts.
    """

    def __init__(
        self,
        message: str,
        raw_text: str,
        strategies: Optional[list[str]] = None
    ):
        self.raw_text = raw_text
        self.strategies = strategies or []
        super().__init__(message)


class TaskValidationError(ExtractionError):
    """A candidate parsed as JSON but failed the required-field checks."""


class DuplicateTaskError(HarnessError):
    """Incoming tasks collide with existing IDs. Nothing was written."""

    def __init__(self, duplicate_ids: list[str]):
        self.duplicate_ids = list(duplicate_ids)
        super().__init__(
            f"Duplicate feature IDs found: {', '.join(self.duplicate_ids)}"
        )


class CollaboratorError(HarnessError):
    """The external agent call failed or returned an unsuccessful result."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)
