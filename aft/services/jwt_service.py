"""
JWT Service — access token generation and verification.

Tokens are issued by the identity provider in front of this service; the
generator here exists for integration environments and tests.

Access token:  15 minutes (configurable via JWT_ACCESS_EXPIRES)
Algorithm:     HS256

Token payload (access):
{
    "sub": "<user_id>",
    "role": "dta",
    "primary_role": "dta" | null,
    "name": "...",
    "email": "...",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from aft.workflow.signature import Actor

# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(actor: Actor) -> str:
    """Generate a short-lived access token carrying *actor*'s identity."""
    now = datetime.now(timezone.utc)
    payload = {
        # PyJWT requires a string subject
        "sub": str(actor.id),
        "role": actor.role,
        "primary_role": actor.primary_role,
        "name": actor.display_name,
        "email": actor.email,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload


def actor_from_claims(payload: dict) -> Actor:
    """Build an Actor from verified token claims.

    Raises jwt.InvalidTokenError when the subject or role is unusable.
    """
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise jwt.InvalidTokenError("Token subject is not a user id") from None
    role = payload.get("role")
    if not role:
        raise jwt.InvalidTokenError("Token carries no role")
    return Actor(
        id=user_id,
        role=role,
        primary_role=payload.get("primary_role") or None,
        display_name=payload.get("name") or "",
        email=payload.get("email") or "",
    )
