"""Idempotency records for retried order requests.

Clients may send an ``Idempotency-Key`` header on order creation, payment
confirmation and cancellation. The first request with a key runs and its
response is stored; a retry with the same key, caller, action and payload
gets the stored response back without running again. Reusing a key for a
different request is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(ValueError):
    def __init__(self):
        super().__init__("IDEMPOTENCY_CONFLICT")


def request_hash(user_id: str, action: str, payload: dict) -> str:
    """Stable SHA-256 of who asked for what, with canonical JSON for the body."""
    body = json.dumps(
        {"user": user_id, "action": action, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, user_id: str, action: str, payload: dict):
    """Get-or-create the idempotency record for ``key``.

    The create path runs in a nested savepoint so a duplicate key only rolls
    back that block; the existing record is then read under a row lock.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is True
        when a previous request already owns the key.

    Raises:
        IdempotencyConflict: The key was used for a different request.
    """
    h = request_hash(user_id, action, payload)
    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey):
    """Drop a record whose request failed before producing a response.

    The key becomes free again, so the client can retry it.
    """
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
