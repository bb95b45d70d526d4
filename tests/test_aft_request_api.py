"""
AFT request API tests — the blueprint end to end through the Flask test client.

Covers:
  - identity resolution (trusted headers, Bearer JWT, none → 401)
  - HTTP status mapping: 201 / 200 / 400 / 403 / 404 / 409
  - full walk through both transfer paths
  - request guards and health endpoints
"""

import pytest

from aft.services import lifecycle_service as svc
from aft.services.jwt_service import generate_access_token
from conftest import headers_for, make_actor

BASE = "/api/v1/aft-requests"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _create(client, actor, transfer_type="low-to-low"):
    r = client.post(BASE, json={
        "transferType": transfer_type,
        "classification": "UNCLASSIFIED",
        "transferPurpose": "Quarterly report hand-off",
        "dataDescription": "PDF bundle",
    }, headers=headers_for(actor))
    assert r.status_code == 201, r.get_json()
    return r.get_json()["request"]


def _post(client, rid, action, actor, payload=None):
    return client.post(f"{BASE}/{rid}/{action}", json=payload or {}, headers=headers_for(actor))


def _sig(actor):
    return {"signature": f"{actor.role}-sig", "date": "2026-01-05"}


def _approved(client, actors, transfer_type="low-to-low"):
    req = _create(client, actors["requestor"], transfer_type)
    r = _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})
    assert r.status_code == 200
    roles = ("dao", "approver", "cpso") if transfer_type == "high-to-low" else ("approver", "cpso")
    for role in roles:
        r = _post(client, req["id"], "approve", actors[role], _sig(actors[role]))
        assert r.status_code == 200, r.get_json()
    return req["id"]


# ═══════════════════════════════════════════════════════════════════════════
# Identity
# ═══════════════════════════════════════════════════════════════════════════


class TestIdentity:

    def test_no_identity_is_401(self, client):
        r = client.post(BASE, json={"transferType": "low-to-low"})
        assert r.status_code == 401

    def test_unknown_role_header_is_ignored(self, client):
        r = client.post(BASE, json={}, headers={"X-User-Id": "1", "X-User-Role": "overlord"})
        assert r.status_code == 401

    def test_bearer_token(self, client, app, actors):
        with app.test_request_context():
            token = generate_access_token(actors["requestor"])
        r = client.post(BASE, json={
            "transferType": "high-to-high",
            "classification": "SECRET",
            "transferPurpose": "p",
            "dataDescription": "d",
        }, headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 201
        assert r.get_json()["request"]["requestor_id"] == actors["requestor"].id

    def test_invalid_token_is_401(self, client):
        r = client.post(BASE, json={}, headers={"Authorization": "Bearer not-a-token"})
        assert r.status_code == 401

    def test_primary_role_header_wins(self, client, actors):
        req = _create(client, actors["requestor"])
        _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})
        multi = make_actor(60, "requestor", primary_role="approver")
        r = _post(client, req["id"], "approve", multi, _sig(multi))
        assert r.status_code == 200
        assert r.get_json()["status"] == "pending_cpso"


# ═══════════════════════════════════════════════════════════════════════════
# Status mapping
# ═══════════════════════════════════════════════════════════════════════════


class TestErrorMapping:

    def test_get_request(self, client, actors):
        req = _create(client, actors["requestor"])
        r = client.get(f"{BASE}/{req['id']}", headers=headers_for(actors["dta"]))
        assert r.status_code == 200
        assert r.get_json()["status"] == "draft"

    def test_unknown_request_is_404(self, client, actors):
        r = _post(client, 9999, "approve", actors["approver"], _sig(actors["approver"]))
        assert r.status_code == 404

    def test_wrong_stage_is_403_with_detail(self, client, actors):
        req = _create(client, actors["requestor"])
        _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})
        r = _post(client, req["id"], "approve", actors["cpso"], _sig(actors["cpso"]))
        assert r.status_code == 403
        body = r.get_json()
        assert body["current_status"] == "pending_approver"
        assert body["role"] == "cpso"

    def test_missing_fields_is_400_with_details(self, client, actors):
        req = _create(client, actors["requestor"])
        _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})
        r = _post(client, req["id"], "approve", actors["approver"], {})
        assert r.status_code == 400
        assert {"signature", "date"} <= set(r.get_json()["details"])

    def test_eligibility_checked_before_payload(self, client, actors):
        req = _create(client, actors["requestor"])
        r = _post(client, req["id"], "approve", actors["cpso"], {})
        assert r.status_code == 403

    def test_ledger_key_rewrite_is_409(self, client, actors):
        from aft.models import db as _db
        from aft.models.aft_request import AftRequest

        rid = _approved(client, actors)
        tc = {"transferMethod": "optical"}
        assert _post(client, rid, "transfer-sign", actors["dta"],
                     {"signature": "d", "transferCompletion": tc}).status_code == 200
        req = _db.session.get(AftRequest, rid, populate_existing=True)
        req.status = "pending_dta"
        _db.session.commit()
        r = _post(client, rid, "transfer-sign", actors["dta"], {"signature": "d", "transferCompletion": tc})
        assert r.status_code == 409

    def test_non_json_body_is_415(self, client, actors):
        r = client.post(BASE, data="transferType=low-to-low", content_type="text/plain",
                        headers=headers_for(actors["requestor"]))
        assert r.status_code == 415

    def test_unexpected_error_is_500(self, client, actors, monkeypatch):
        req = _create(client, actors["requestor"])

        def _boom(*args, **kwargs):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(svc, "submit", _boom)
        monkeypatch.setitem(svc.OPERATIONS, "submit", _boom)
        r = _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})
        assert r.status_code == 500
        assert r.get_json() == {"error": "Internal server error"}


# ═══════════════════════════════════════════════════════════════════════════
# Full walks
# ═══════════════════════════════════════════════════════════════════════════


class TestLifecycleWalks:

    def test_transfer_sign_walk(self, client, actors):
        rid = _approved(client, actors, "high-to-low")
        r = _post(client, rid, "transfer-sign", actors["dta"],
                  {"signature": "d", "technicalValidation": {"antivirusResults": "clean"}})
        assert r.get_json()["status"] == "pending_sme"
        r = _post(client, rid, "transfer-sign", actors["sme"],
                  {"signature": "s", "technicalValidation": {"antivirusResults": "clean"}})
        assert r.get_json()["status"] == "pending_media_custodian"
        r = _post(client, rid, "disposition", actors["media_custodian"], {"mediaDisposition": {
            "opticalDestroyed": "na", "opticalRetained": "na", "ssdSanitized": "yes",
            "custodianName": "Pat", "custodianSignature": "pat", "date": "2026-01-07",
        }})
        assert r.status_code == 200
        body = r.get_json()
        assert body["previous_status"] == "pending_media_custodian"
        assert body["status"] == "disposed"
        assert body["request"]["transfer_data"]["mediaDisposition"]["ssdSanitized"] == "yes"

    def test_section_four_walk(self, client, actors):
        rid = _approved(client, actors)
        assert _post(client, rid, "initiate-transfer", actors["dta"]).get_json()["status"] == "active_transfer"

        r = _post(client, rid, "transfer-complete", actors["dta"], {
            "filesTransferred": 2, "dtaName": "Dana", "dtaSignature": "dana",
            "transferDate": "2026-01-06", "tpiMaintained": False,
        })
        assert r.status_code == 400
        assert "tpiMaintained" in r.get_json()["details"]

        r = _post(client, rid, "transfer-complete", actors["dta"], {
            "filesTransferred": 2, "dtaName": "Dana", "dtaSignature": "dana",
            "transferDate": "2026-01-06", "tpiMaintained": True,
        })
        assert r.get_json()["status"] == "pending_sme_signature"
        r = _post(client, rid, "sme-sign", actors["sme"], {"signature": "sme"})
        assert r.get_json()["status"] == "pending_media_custodian"
        r = _post(client, rid, "disposition", actors["media_custodian"], {
            "dispositionType": "completed", "custodianName": "Pat", "date": "2026-01-07",
        })
        assert r.get_json()["status"] == "completed"

    def test_reject_and_cancel(self, client, actors):
        first = _create(client, actors["requestor"])
        second = _create(client, actors["requestor"])
        for req in (first, second):
            _post(client, req["id"], "submit", actors["requestor"], {"signature": "s", "acknowledgeTerms": True})

        r = _post(client, first["id"], "reject", actors["approver"], {"reason": "Incomplete description"})
        assert r.get_json()["request"]["rejection_reason"] == "Incomplete description"
        r = _post(client, second["id"], "cancel", actors["requestor"])
        assert r.get_json()["status"] == "cancelled"

    def test_available_actions(self, client, actors):
        rid = _approved(client, actors)
        r = client.get(f"{BASE}/{rid}/available-actions", headers=headers_for(actors["dta"]))
        assert r.status_code == 200
        assert r.get_json()["actions"] == ["initiate_transfer", "transfer_sign"]


# ═══════════════════════════════════════════════════════════════════════════
# Ambient endpoints
# ═══════════════════════════════════════════════════════════════════════════


class TestAmbient:

    def test_health(self, client):
        r = client.get("/api/v1/health")
        assert r.status_code == 200
        assert r.get_json()["status"] == "ok"

    def test_health_live_checks_database(self, client):
        r = client.get("/api/v1/health/live")
        assert r.status_code == 200
        assert r.get_json()["checks"]["database"]["status"] == "ok"

    @pytest.mark.parametrize("path", ["/api/v1/health", BASE + "/1"])
    def test_request_id_and_security_headers(self, client, path):
        r = client.get(path, headers={"X-Request-ID": "trace-123"})
        assert r.headers["X-Request-ID"] == "trace-123"
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert r.headers["Cache-Control"] == "no-store"
