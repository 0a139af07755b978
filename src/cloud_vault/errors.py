"""Error taxonomy shared by every vault operation."""

from __future__ import annotations


class VaultError(Exception):
    """Base class for errors surfaced to the user as a notification."""

    kind = "error"


class AuthNotReady(VaultError):
    """Raised when no bearer token is available after the bounded wait."""

    kind = "auth_not_ready"


class NetworkError(VaultError):
    """Raised when the control plane cannot be reached at all."""

    kind = "network_error"


class RequestRejected(VaultError):
    """Raised when the control plane answers with a status code >= 400."""

    kind = "request_rejected"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Request rejected {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class TransferError(VaultError):
    """Raised when an object-store link read or write fails."""

    kind = "transfer_error"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Transfer failed {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ValidationError(VaultError):
    """Raised when a client-side precondition fails."""

    kind = "validation_error"
