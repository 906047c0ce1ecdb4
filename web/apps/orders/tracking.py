"""Order tracking tokens.

Tokens authorize unauthenticated order lookups from an email link. Only a
peppered SHA-256 hash is stored; the plaintext is returned once, at
creation, and never persisted.
"""

import hashlib
import secrets
from datetime import timedelta

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from .errors import TokenInvalidError
from .models import OrderModel, OrderTrackingToken

TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    pepper = getattr(settings, "ORDER_TRACKING_TOKEN_PEPPER", "")
    return hashlib.sha256((token + pepper).encode("utf-8")).hexdigest()


def issue_token(order: OrderModel, created_by: str = "checkout") -> str:
    """Create a token for ``order`` and return its plaintext."""
    token = secrets.token_urlsafe(TOKEN_BYTES)
    OrderTrackingToken.objects.create(
        order=order,
        token_hash=hash_token(token),
        expires_at=timezone.now() + timedelta(days=getattr(settings, "ORDER_TRACKING_TOKEN_TTL_DAYS", 7)),
        created_by=created_by,
    )
    return token


def verify_token(order: OrderModel, token: str | None) -> None:
    """Check ``token`` against ``order`` and record the access.

    Raises:
        TokenInvalidError: Missing, unknown, revoked or expired token.
    """
    if not token:
        raise TokenInvalidError("Tracking token is required")
    now = timezone.now()
    updated = OrderTrackingToken.objects.filter(
        order=order, token_hash=hash_token(token), revoked_at__isnull=True, expires_at__gt=now
    ).update(last_accessed_at=now, access_count=F("access_count") + 1)
    if not updated:
        raise TokenInvalidError("Invalid or expired tracking token")


def revoke_all(order: OrderModel) -> int:
    """Revoke every live token of ``order``; returns how many were revoked."""
    return OrderTrackingToken.objects.filter(order=order, revoked_at__isnull=True).update(revoked_at=timezone.now())


def reissue_token(order: OrderModel, created_by: str) -> str:
    """Revoke existing tokens and hand out a fresh one (e.g. lost email)."""
    revoke_all(order)
    return issue_token(order, created_by=created_by)
