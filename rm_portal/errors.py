from __future__ import annotations


class PortalError(Exception):
    pass


class ValidationError(PortalError, ValueError):
    pass


class NotFoundError(PortalError, ValueError):
    pass


class PermissionDeniedError(PortalError):
    pass


class PersistenceError(PortalError):
    """A record store call failed. Optimistic in-memory changes are already reverted."""


class PolicyWarning(PortalError):
    """A policy check the caller must acknowledge before retrying with ``confirm=True``.

    Blocking warnings cannot be confirmed away (e.g. an approved table without a PO receipt).
    """

    def __init__(self, message: str, *, code: str, blocking: bool = False, cutoff=None) -> None:
        super().__init__(message)
        self.code = code
        self.blocking = blocking
        self.cutoff = cutoff
