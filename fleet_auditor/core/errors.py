from __future__ import annotations

from typing import Literal

TransportErrorKind = Literal["unreachable", "auth_failed", "timeout", "remote_error"]


class AuditError(Exception):
    """Base exception for the audit system."""
    pass


class ContractError(AuditError):
    """Raised when a target identity or collector descriptor is malformed."""
    pass


class ConfigurationError(AuditError):
    """Raised when audit options fail validation."""
    pass


class TierUnavailable(AuditError):
    """Raised by a collector tier that cannot run against this target."""
    pass


class TransportError(AuditError):
    """
    Typed failure from the remote-execution transport.

    kind is one of: unreachable, auth_failed, timeout, remote_error.
    """

    def __init__(self, kind: TransportErrorKind, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind

    def __str__(self) -> str:
        text = super().__str__()
        return text if text == self.kind else f"{self.kind}: {text}"

    @property
    def is_auth_failure(self) -> bool:
        return self.kind == "auth_failed"

    @property
    def is_timeout(self) -> bool:
        return self.kind == "timeout"
