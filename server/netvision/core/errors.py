"""Error taxonomy shared by the core and its adapters.

Input errors are user-facing and never retried. Collaborator errors are
transient: the client may resubmit the same request later.
"""

from __future__ import annotations


class NetVisionError(Exception):
    """Base class for all errors raised by the core."""


class InvalidInputError(NetVisionError):
    """A coordinate, radio metric or speed value failed validation."""


class ProtocolError(NetVisionError):
    """A session message could not be parsed or has no handler."""


class AuthenticationError(NetVisionError):
    """The auth collaborator rejected the token."""

    def __init__(self, reason: str = "Authentication failed") -> None:
        super().__init__(reason)
        self.reason = reason


class CollaboratorUnavailableError(NetVisionError):
    """A downstream collaborator failed or timed out."""


class StoreUnavailableError(CollaboratorUnavailableError):
    pass


class AuthUnavailableError(CollaboratorUnavailableError):
    pass
