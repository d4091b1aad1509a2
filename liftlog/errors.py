from __future__ import annotations

from enum import Enum
from typing import Optional


class LiftlogError(Exception):
    """Base class for every error the workout core raises."""


class ValidationError(LiftlogError):
    """Caller input rejected before any I/O happened."""


class PersistenceError(LiftlogError):
    """The local store could not be written (quota exceeded or unavailable)."""


class RemoteErrorReason(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    SERVER = "server"


class RemoteError(LiftlogError):
    def __init__(
        self,
        reason: RemoteErrorReason,
        message: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.reason = RemoteErrorReason(reason)
        self.status_code = status_code
        super().__init__(message or f"remote call failed ({self.reason.value})")
