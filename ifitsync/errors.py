"""Exceptions raised by the ifitsync session engine and its collaborators."""

from __future__ import annotations


class IFitSyncError(Exception):
    """Base class for ifitsync errors."""


class TransportUnavailable(IFitSyncError):
    """Raised when scanning or connecting to the equipment fails."""


class ActivationError(IFitSyncError):
    """Raised when the equipment rejects or ignores the activation code."""


class BootstrapStepFailed(IFitSyncError):
    """Raised when one of the bootstrap steps does not complete.

    The session never enters polling after this error; it disconnects and
    starts discovery again.
    """

    def __init__(self, step: str, reason: object = None) -> None:
        self.step = step
        self.reason = reason
        message = f"Bootstrap step '{step}' failed"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)


class TransientReadWriteFailure(IFitSyncError):
    """A single read/write exchange failed while the link is still up."""


class DisconnectedDuringPoll(IFitSyncError):
    """The link dropped during an exchange. Always wins over other failures."""
