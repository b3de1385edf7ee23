"""
django-manifest: Load manifesting for skydiving dropzones.

Provides:
- Client core: eligibility, permission gate, slot allocator, group manifest
  transaction and load lifecycle working on in-memory load snapshots
- ManifestContext: explicitly-scoped session holding the current load list
- DjangoBackend: authoritative reference backend over the ORM services
"""

__version__ = "0.1.0"

__all__ = [
    # Client core
    "ManifestContext",
    "SlotAllocator",
    "ManifestGroupTransaction",
    "PermissionGate",
    "check_eligibility",
    # Backends
    "ManifestBackend",
    "DjangoBackend",
    # Exceptions
    "ManifestError",
    "ManifestValidationError",
    "Forbidden",
    "NotEligible",
    "CapacityExceeded",
    "PlaneTooSmall",
    "LoadClosed",
    "InvalidTransition",
    "MissingCrew",
    "MissingPilot",
    "CollaboratorFieldError",
    "TransportFailure",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name == "ManifestContext":
        from django_manifest.context import ManifestContext
        return ManifestContext
    if name == "SlotAllocator":
        from django_manifest.allocator import SlotAllocator
        return SlotAllocator
    if name == "ManifestGroupTransaction":
        from django_manifest.group import ManifestGroupTransaction
        return ManifestGroupTransaction
    if name == "PermissionGate":
        from django_manifest.permissions import PermissionGate
        return PermissionGate
    if name == "check_eligibility":
        from django_manifest.eligibility import check_eligibility
        return check_eligibility
    if name == "ManifestBackend":
        from django_manifest.backends.base import ManifestBackend
        return ManifestBackend
    if name == "DjangoBackend":
        from django_manifest.backends.orm import DjangoBackend
        return DjangoBackend
    if name in __all__:
        from django_manifest import exceptions
        return getattr(exceptions, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
