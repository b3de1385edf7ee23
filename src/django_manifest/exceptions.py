"""Custom exceptions for django-manifest."""


class ManifestError(Exception):
    """Base exception for manifest errors."""
    pass


class ManifestValidationError(ManifestError):
    """Raised when a request fails local field validation.

    Never sent to the backend. `errors` maps a local field name to the
    message to show next to that field.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        message = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(message or "Invalid request")


class Forbidden(ManifestError):
    """Raised when the actor lacks the capability for an operation."""

    def __init__(self, reason: str = "You do not have permission to do this"):
        self.reason = reason
        super().__init__(reason)


class NotEligible(ManifestError):
    """Raised when a participant has unmet manifest requirements."""

    def __init__(self, participant_id, reasons: list[str], messages: list[str] = None):
        self.participant_id = participant_id
        self.reasons = list(reasons)
        self.messages = list(messages or reasons)
        super().__init__(self.messages[0] if self.messages else "Not eligible")


class CapacityExceeded(ManifestError):
    """Raised when an allocation would exceed the load's capacity."""

    def __init__(self, requested: int, available: int, reason: str = None):
        self.requested = requested
        self.available = available
        self.reason = reason or (
            f"Load has {max(available, 0)} slot(s) available, {requested} requested"
        )
        super().__init__(self.reason)


class PlaneTooSmall(CapacityExceeded):
    """Raised when reassigning a load to a plane that cannot seat its slots."""

    def __init__(self, overflow: int):
        self.overflow = overflow
        super().__init__(
            requested=overflow,
            available=0,
            reason=f"You need to take {overflow} people off the load to fit on this plane",
        )


class LoadClosed(ManifestError):
    """Raised when a load no longer accepts slot changes."""

    def __init__(self, load_id, reason: str = None):
        self.load_id = load_id
        self.reason = reason or f"Load '{load_id}' is not accepting manifests"
        super().__init__(self.reason)


class InvalidTransition(ManifestError):
    """Raised when attempting an invalid load lifecycle transition."""

    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from '{from_state}' to '{to_state}'"
        super().__init__(self.reason)


class MissingCrew(InvalidTransition):
    """Raised when marking a load as landed without a load master."""

    def __init__(self, from_state: str):
        super().__init__(from_state, "landed", "A load master must be assigned before landing")


class MissingPilot(InvalidTransition):
    """Raised when marking a load as landed without a pilot."""

    def __init__(self, from_state: str):
        super().__init__(from_state, "landed", "A pilot must be assigned before landing")


class CollaboratorFieldError(ManifestError):
    """Raised when the backend rejects a request.

    `field_errors` is keyed by the backend's domain field names
    (e.g. 'jump_type', 'credits'); `errors` holds general messages.
    """

    def __init__(self, field_errors: dict[str, str] = None, errors: list[str] = None):
        self.field_errors = dict(field_errors or {})
        self.errors = list(errors or [])
        parts = [f"{k}: {v}" for k, v in self.field_errors.items()] + self.errors
        super().__init__("; ".join(parts) or "Request rejected")


class TransportFailure(ManifestError):
    """Raised when the backend cannot be reached.

    Retrying with the same `idempotency_key` does not create duplicates.
    """

    def __init__(self, reason: str = "Could not reach the manifest service", idempotency_key: str = None):
        self.reason = reason
        self.idempotency_key = idempotency_key
        super().__init__(reason)


# =============================================================================
# Reference backend (service layer) exceptions
# =============================================================================


class ServiceError(ManifestError):
    """Base exception for authoritative service errors."""
    pass


class ServiceFieldError(ServiceError):
    """Raised by services when a request fails authoritative validation."""

    def __init__(self, field_errors: dict[str, str] = None, errors: list[str] = None):
        self.field_errors = dict(field_errors or {})
        self.errors = list(errors or [])
        parts = [f"{k}: {v}" for k, v in self.field_errors.items()] + self.errors
        super().__init__("; ".join(parts) or "Request rejected")


class ServicePermissionDenied(ServiceError):
    """Raised by services when the acting dropzone user lacks a capability."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"Permission denied: {capability}")


class IdempotencyKeyMismatch(ServiceFieldError):
    """Raised when a completed idempotency key is reused for a different request."""

    def __init__(self, scope: str, key: str):
        self.scope = scope
        self.key = key
        super().__init__({"idempotency_key": "This request key was already used for a different request"})
