"""Idempotent execution for retried manifest requests."""

import functools
import hashlib
import json
import logging
from datetime import timedelta

from django.db import models, transaction
from django.utils import timezone

from .conf import get_setting
from .exceptions import IdempotencyKeyMismatch

logger = logging.getLogger(__name__)


def _serialize_result(result):
    """Serialize result for JSON storage, converting Django models to PKs."""
    if isinstance(result, models.Model):
        return {"__model__": True, "pk": str(result.pk)}
    if isinstance(result, (list, tuple)):
        return [_serialize_result(item) for item in result]
    if isinstance(result, dict):
        return {k: _serialize_result(v) for k, v in result.items()}
    return result


def request_hash(payload) -> str:
    """Stable SHA-256 of a JSON-compatible payload; non-JSON values hash by str()."""
    body = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(body.encode()).hexdigest()


def idempotent(scope, key_from=None, hash_from=None):
    """
    Decorator for idempotent operations.

    Ensures the decorated function executes at most once for a given key.
    Retries return the cached result. Failed operations can be retried.

    Args:
        scope: The scope for the idempotency key (e.g., 'create_slots')
        key_from: Function to derive key from args. If not provided, uses
                  the 'idempotency_key' kwarg. A None key disables replay
                  protection for that call.
        hash_from: Function returning the request payload to hash. A
                   succeeded key arriving with a different hash raises
                   IdempotencyKeyMismatch instead of replaying.

    Usage:
        @idempotent(scope='create_slots', hash_from=slot_request)
        def create_slots(load_id, members, activity, *, actor, idempotency_key):
            ...
            return {'load_id': load.pk, 'slot_ids': [...]}

    Results must be JSON-serializable; model instances are stored as PKs,
    so a replay returns PKs rather than instances.
    """
    if scope is None:
        raise TypeError("idempotent() requires 'scope' parameter")

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            from .models import IdempotencyKey

            if key_from is not None:
                key = key_from(*args, **kwargs)
            else:
                key = kwargs.get("idempotency_key")
            if not key:
                return func(*args, **kwargs)

            digest = request_hash(hash_from(*args, **kwargs)) if hash_from is not None else ""
            now = timezone.now()
            with transaction.atomic():
                idem, created = IdempotencyKey.objects.select_for_update().get_or_create(
                    scope=scope,
                    key=key,
                    defaults={
                        "request_hash": digest,
                        "state": IdempotencyKey.State.PROCESSING,
                        "locked_at": now,
                        "expires_at": now + timedelta(seconds=int(get_setting("IDEMPOTENCY_TTL"))),
                    },
                )
                if not created:
                    if idem.state == IdempotencyKey.State.SUCCEEDED:
                        if idem.request_hash != digest:
                            logger.warning(f"Rejected reuse of {scope}:{key} for a different request")
                            raise IdempotencyKeyMismatch(scope, key)
                        logger.info(f"Replaying {scope}:{key}")
                        return idem.response_snapshot
                    # A failed attempt committed nothing, so it may be retried with new content
                    idem.request_hash = digest
                    idem.state = IdempotencyKey.State.PROCESSING
                    idem.locked_at = now
                    idem.error_code = ""
                    idem.error_message = ""
                    idem.save()

            try:
                with transaction.atomic():
                    result = func(*args, **kwargs)

                with transaction.atomic():
                    idem.refresh_from_db()
                    idem.state = IdempotencyKey.State.SUCCEEDED
                    idem.response_snapshot = _serialize_result(result)
                    idem.save()

                return result

            except Exception as e:
                with transaction.atomic():
                    idem.refresh_from_db()
                    idem.state = IdempotencyKey.State.FAILED
                    idem.error_code = type(e).__name__
                    idem.error_message = str(e)
                    idem.save()
                raise

        return wrapper
    return decorator
