"""Error taxonomy for the journal client.

Per-file upload failures and search failures are captured into result
models; only precondition violations propagate to callers.
"""

from enum import Enum
from typing import Optional


class JournalError(Exception):
    """Base class for all journal client errors."""


class RejectionReason(Enum):
    """Why a selected file never entered the upload task list."""
    UNSUPPORTED_TYPE = "unsupported_type"
    TOO_LARGE = "too_large"
    TOO_MANY_FILES = "too_many_files"


class UploadStage(Enum):
    """Pipeline stage at which an upload failed."""
    DESTINATION = "destination"
    TRANSFER = "transfer"
    FINALIZE = "finalize"


class FileRejected(JournalError):
    """Client-side validation failure, raised before any network call."""

    def __init__(self, name: str, reason: RejectionReason, message: str):
        super().__init__(message)
        self.name = name
        self.reason = reason
        self.message = message


class ApiError(JournalError):
    """Non-2xx response or transport failure from a backend collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


class UploadError(JournalError):
    """A single file's upload failed at a given stage."""

    def __init__(self, stage: UploadStage, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


class UploadInProgressError(JournalError):
    """A second batch was started while the first is still settling."""


class CameraError(JournalError):
    """Base class for camera adapter failures."""


class CameraPermissionError(CameraError):
    """The user or platform denied camera access."""


class CameraUnavailableError(CameraError):
    """No camera device could be opened."""


class CameraStateError(CameraError):
    """An operation was attempted in a state that does not allow it."""
