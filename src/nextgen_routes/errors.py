"""Error taxonomy shared by the reconciliation components."""

from __future__ import annotations


class ControllerError(Exception):
    """Base class for every error raised by the reconciliation core."""


class ValidationError(ControllerError):
    """An extended spec document is malformed or inconsistent.

    Fatal to the document being processed; nothing from it is applied.
    """


class AdmissionRejection(ControllerError):
    """A single route was excluded from its route group."""

    HOST_ALREADY_CLAIMED = "HostAlreadyClaimed"
    EXTENDED_VALIDATION_FAILED = "ExtendedValidationFailed"
    SERVICE_NOT_FOUND = "ServiceNotFound"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class ResolutionError(ControllerError):
    """The in-progress build of a route group cannot complete."""


class TransientInfraError(ControllerError):
    """An external collaborator failed in a way that may succeed on retry."""


class SecretNotFound(TransientInfraError):
    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f"secret {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class UnknownEventError(TypeError):
    """Raised for events whose type has no handler."""
