"""
Identity Middleware — resolves the calling actor, sets g.current_actor.

Priority order:
  1. JWT (Authorization: Bearer <token>)  →  claims sub / role / primary_role
  2. X-User-* headers from a trusted proxy (only when
     AFT_HEADER_IDENTITY_ENABLED is set)  →  X-User-Id, X-User-Role,
     X-User-Primary-Role, X-User-Name, X-User-Email

An invalid token or incomplete headers leave g.current_actor as None; the
service layer answers 401 for any operation that needs an actor.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from aft.services.jwt_service import actor_from_claims, decode_access_token
from aft.workflow.constants import ROLES
from aft.workflow.signature import Actor

logger = logging.getLogger(__name__)

# Paths that skip identity resolution entirely
IDENTITY_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _actor_from_headers():
    user_id = request.headers.get("X-User-Id", "")
    role = request.headers.get("X-User-Role", "").strip().lower()
    if not user_id or not role:
        return None
    try:
        user_id = int(user_id)
    except ValueError:
        logger.warning("Ignoring non-numeric X-User-Id header",
                       extra={"event_type": "identity_rejected"})
        return None
    if role not in ROLES:
        logger.warning("Ignoring unknown X-User-Role %r", role,
                       extra={"event_type": "identity_rejected"})
        return None
    primary = request.headers.get("X-User-Primary-Role", "").strip().lower() or None
    if primary is not None and primary not in ROLES:
        primary = None
    return Actor(
        id=user_id,
        role=role,
        primary_role=primary,
        display_name=request.headers.get("X-User-Name", ""),
        email=request.headers.get("X-User-Email", ""),
    )


def init_identity_middleware(app):
    """Register identity resolution as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.current_actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in IDENTITY_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]  # Strip "Bearer "
            try:
                g.current_actor = actor_from_claims(decode_access_token(token))
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired access token", extra={"event_type": "identity_rejected"})
            except pyjwt.InvalidTokenError as exc:
                logger.warning("Invalid access token: %s", exc,
                               extra={"event_type": "identity_rejected"})
            return

        if current_app.config.get("AFT_HEADER_IDENTITY_ENABLED"):
            g.current_actor = _actor_from_headers()


def current_actor():
    """The actor resolved for this request, or None."""
    return getattr(g, "current_actor", None)
