"""Idempotency keys for checkout requests.

A client retrying ``POST /api/orders/`` with the same ``Idempotency-Key``
gets the stored response instead of a second order. Reusing a key with a
different payload is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .errors import IdempotencyConflictError
from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """SHA-256 of the payload serialized with sorted keys and compact separators."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create the record for ``key``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is True
        when a previous request already used the key with the same payload.

    Raises:
        IdempotencyConflictError: The key was used with a different payload.
    """
    h = _hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflictError("Idempotency-Key was already used with a different payload") from None
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
