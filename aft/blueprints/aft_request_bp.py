"""
AFT Request Blueprint — lifecycle endpoints for Assured File Transfer requests.

Endpoints:
    POST   /api/v1/aft-requests
           Body: { "transferType", "classification", "transferPurpose",
                   "dataDescription", "dtaId"?, "smeId"?, ... }
           Returns: 201 with the draft request.

    GET    /api/v1/aft-requests/<id>
    GET    /api/v1/aft-requests/<id>/available-actions

    POST   /api/v1/aft-requests/<id>/submit
    POST   /api/v1/aft-requests/<id>/approve
    POST   /api/v1/aft-requests/<id>/reject
    POST   /api/v1/aft-requests/<id>/cancel
    POST   /api/v1/aft-requests/<id>/initiate-transfer
    POST   /api/v1/aft-requests/<id>/transfer-complete
    POST   /api/v1/aft-requests/<id>/transfer-sign
    POST   /api/v1/aft-requests/<id>/sme-sign
    POST   /api/v1/aft-requests/<id>/disposition
           Returns: 200 with {action, previous_status, status, ledger, request}.

Layer contract:
    - Blueprint: resolve the actor, read the JSON body, call the service,
                 map typed errors to HTTP codes.
    - NO db.session calls here — all writes owned by request_gateway.
    - NO inline role checks — eligibility lives in aft.workflow.transitions.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from aft.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from aft.middleware.identity import current_actor
from aft.services import lifecycle_service
from aft.services.request_gateway import get_request
from aft.workflow import transitions as tx

logger = logging.getLogger(__name__)

aft_request_bp = Blueprint("aft_request", __name__, url_prefix="/api/v1")


# ── Error handlers ───────────────────────────────────────────────────────────


@aft_request_bp.errorhandler(UnauthorizedError)
def _handle_unauthorized(error: UnauthorizedError):
    return jsonify({"error": str(error)}), 401


@aft_request_bp.errorhandler(ForbiddenError)
def _handle_forbidden(error: ForbiddenError):
    return jsonify({
        "error": str(error),
        "current_status": error.current_status,
        "role": error.role,
    }), 403


@aft_request_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 400


@aft_request_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": str(error)}), 404


@aft_request_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"error": str(error)}), 409


@aft_request_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in aft_request_bp endpoint=%s", request.endpoint)
    return jsonify({"error": "Internal server error"}), 500


# ── Helpers ──────────────────────────────────────────────────────────────────


def _run(operation: str, request_id: int):
    result = lifecycle_service.run_transition(
        operation,
        request_id,
        current_actor(),
        request.get_json(silent=True),
        retries=current_app.config.get("AFT_CONFLICT_RETRIES", 0),
    )
    return jsonify(result.to_dict()), 200


# ── Routes ───────────────────────────────────────────────────────────────────


@aft_request_bp.route("/aft-requests", methods=["POST"])
def create_request():
    result = lifecycle_service.create_request(current_actor(), request.get_json(silent=True))
    return jsonify(result.to_dict()), 201


@aft_request_bp.route("/aft-requests/<int:request_id>", methods=["GET"])
def get_aft_request(request_id):
    if current_actor() is None:
        raise UnauthorizedError()
    return jsonify(get_request(request_id).to_dict()), 200


@aft_request_bp.route("/aft-requests/<int:request_id>/available-actions", methods=["GET"])
def available_actions(request_id):
    return jsonify(lifecycle_service.available_actions(request_id, current_actor())), 200


@aft_request_bp.route("/aft-requests/<int:request_id>/submit", methods=["POST"])
def submit_request(request_id):
    return _run(tx.SUBMIT, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/approve", methods=["POST"])
def approve_request(request_id):
    return _run(tx.APPROVE, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/reject", methods=["POST"])
def reject_request(request_id):
    return _run(tx.REJECT, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/cancel", methods=["POST"])
def cancel_request(request_id):
    return _run(tx.CANCEL, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/initiate-transfer", methods=["POST"])
def initiate_transfer(request_id):
    return _run(tx.INITIATE_TRANSFER, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/transfer-complete", methods=["POST"])
def transfer_complete(request_id):
    return _run(tx.TRANSFER_COMPLETE, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/transfer-sign", methods=["POST"])
def transfer_sign(request_id):
    return _run(tx.TRANSFER_SIGN, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/sme-sign", methods=["POST"])
def sme_sign(request_id):
    return _run(tx.SME_SIGN, request_id)


@aft_request_bp.route("/aft-requests/<int:request_id>/disposition", methods=["POST"])
def media_disposition(request_id):
    return _run(tx.MEDIA_DISPOSITION, request_id)
