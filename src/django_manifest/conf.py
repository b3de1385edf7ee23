"""Configuration helpers for django-manifest."""

from django.conf import settings


DEFAULTS = {
    # Supported dispatch call offsets, in minutes
    "DISPATCH_OFFSETS": (5, 10, 15, 20),
    # Seconds between load list refreshes
    "POLL_INTERVAL": 30,
    # Seconds an idempotency key is kept before cleanup
    "IDEMPOTENCY_TTL": 24 * 60 * 60,
}


def get_setting(name: str, default=None):
    """Get a setting with MANIFEST_ prefix, falling back to package defaults."""
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"MANIFEST_{name}", default)


def get_dispatch_offsets() -> tuple[int, ...]:
    """Dispatch call offsets in minutes, ascending."""
    return tuple(sorted(int(m) for m in get_setting("DISPATCH_OFFSETS")))


def get_poll_interval() -> int:
    """Seconds between automatic load list refreshes."""
    return int(get_setting("POLL_INTERVAL"))
