"""Idempotency-Key support for the checkout endpoint.

A till that loses the response to a checkout request can resend it with the
same ``Idempotency-Key`` header and get the original response back instead
of ringing up the sale twice. Requests without the header are never
de-duplicated: each one is a new sale.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(ValueError):
    """The key was already used with a different request body."""


def request_hash(payload: dict) -> str:
    """Return a SHA-256 hex digest of ``payload`` in canonical JSON form."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def claim_key(key: str, payload: dict) -> tuple[bool, IdempotencyKey]:
    """Get-or-create the record for ``key``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(replay, record)``. ``replay`` is
        False when this call created the record (the caller must process the
        request and then ``store_response``) and True when the key was seen
        before with an identical payload.

    Raises:
        IdempotencyConflict: The key exists with a different payload hash.
    """
    h = request_hash(payload)
    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h)
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict("IDEMPOTENCY_CONFLICT")
        return True, rec


def store_response(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Persist the final response so later retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def release_key(rec: IdempotencyKey) -> None:
    """Forget a claim whose request ended without a final response.

    A retry with the same key is then processed as a new request.
    """
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()


def in_progress(rec: IdempotencyKey) -> bool:
    """True while the first request holding the key has not stored a response."""
    return not rec.response_status
