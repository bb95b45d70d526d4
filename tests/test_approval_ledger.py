"""
Approval ledger tests — pure functions, no database.

Covers:
  - status derivation order dao → approver → cpso → pending_dta
  - requiresDAOApproval fixed at creation, never recomputed
  - completedAt stamped exactly once
  - lenient parsing of missing / malformed / non-object JSON
  - immutable signature keys
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from aft.core.exceptions import ConflictError
from aft.workflow.approval_ledger import (
    ApprovalLedger,
    first_missing_role,
    next_approval_status,
    parse_approval_ledger,
    record_approval,
)
from aft.workflow.signature import Actor, SignatureRecord

NOW = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)


def _sig(role: str, user_id: int = 7) -> SignatureRecord:
    actor = Actor(id=user_id, role=role, display_name=f"{role} user", email=f"{role}@example.test")
    return SignatureRecord.sign(actor, f"signed-by-{role}", date="2026-01-05", now=NOW)


# ═══════════════════════════════════════════════════════════════════════════
# Status derivation
# ═══════════════════════════════════════════════════════════════════════════


class TestNextApprovalStatus:

    def test_empty_high_to_low_waits_for_dao(self):
        assert next_approval_status(ApprovalLedger.new("high-to-low")) == "pending_dao"

    @pytest.mark.parametrize("transfer_type", ["low-to-low", "low-to-high", "high-to-high"])
    def test_empty_non_dao_ledger_waits_for_approver(self, transfer_type):
        assert next_approval_status(ApprovalLedger.new(transfer_type)) == "pending_approver"

    def test_dao_then_approver_then_cpso(self):
        ledger = ApprovalLedger.new("high-to-low")
        ledger, status = record_approval(ledger, "dao", _sig("dao"), NOW)
        assert status == "pending_approver"
        ledger, status = record_approval(ledger, "approver", _sig("approver"), NOW)
        assert status == "pending_cpso"
        ledger, status = record_approval(ledger, "cpso", _sig("cpso"), NOW)
        assert status == "pending_dta"

    def test_approver_and_cpso_complete_non_dao_ledger(self):
        ledger = ApprovalLedger.new("low-to-high")
        ledger, status = record_approval(ledger, "approver", _sig("approver"), NOW)
        assert status == "pending_cpso"
        ledger, status = record_approval(ledger, "cpso", _sig("cpso"), NOW)
        assert status == "pending_dta"

    def test_out_of_order_signature_still_derives_first_gap(self):
        """A CPSO signature recorded first leaves the approver as the next gap."""
        ledger = ApprovalLedger.new("low-to-low")
        ledger, status = record_approval(ledger, "cpso", _sig("cpso"), NOW)
        assert status == "pending_approver"
        assert first_missing_role(ledger) == "approver"

    def test_derivation_is_idempotent(self):
        ledger = ApprovalLedger.new("high-to-low")
        ledger, _ = record_approval(ledger, "dao", _sig("dao"), NOW)
        assert next_approval_status(ledger) == next_approval_status(ledger) == "pending_approver"

    def test_extra_dao_signature_on_non_dao_ledger_is_ignored_for_routing(self):
        ledger = ApprovalLedger.new("low-to-low")
        ledger, status = record_approval(ledger, "dao", _sig("dao"), NOW)
        assert status == "pending_approver"
        assert "dao" in ledger.signatures


# ═══════════════════════════════════════════════════════════════════════════
# completedAt and immutability
# ═══════════════════════════════════════════════════════════════════════════


class TestCompletion:

    def test_completed_at_stamped_when_last_signature_lands(self):
        ledger = ApprovalLedger.new("low-to-low")
        ledger, _ = record_approval(ledger, "approver", _sig("approver"), NOW)
        assert ledger.completed_at is None
        ledger, _ = record_approval(ledger, "cpso", _sig("cpso"), NOW)
        assert ledger.completed_at == NOW.isoformat()

    def test_completed_at_not_overwritten(self):
        ledger = ApprovalLedger.new("low-to-low")
        ledger, _ = record_approval(ledger, "approver", _sig("approver"), NOW)
        ledger, _ = record_approval(ledger, "cpso", _sig("cpso"), NOW)
        later = datetime(2026, 2, 1, tzinfo=timezone.utc)
        ledger, status = record_approval(ledger, "dao", _sig("dao"), later)
        assert status == "pending_dta"
        assert ledger.completed_at == NOW.isoformat()

    def test_existing_signature_key_cannot_be_rewritten(self):
        ledger = ApprovalLedger.new("low-to-low")
        ledger, _ = record_approval(ledger, "approver", _sig("approver", 1), NOW)
        with pytest.raises(ConflictError):
            record_approval(ledger, "approver", _sig("approver", 2), NOW)

    def test_record_does_not_mutate_input(self):
        ledger = ApprovalLedger.new("low-to-low")
        record_approval(ledger, "approver", _sig("approver"), NOW)
        assert ledger.signatures == {}


# ═══════════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════════


class TestParseApprovalLedger:

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_ledger_is_fresh(self, raw):
        ledger = parse_approval_ledger(raw, "high-to-low")
        assert ledger.signatures == {}
        assert ledger.requires_dao_approval is True

    def test_malformed_json_is_fresh_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            ledger = parse_approval_ledger("{not json", "low-to-low")
        assert ledger.signatures == {}
        assert next_approval_status(ledger) == "pending_approver"
        assert any(getattr(r, "event_type", None) == "ledger_anomaly" for r in caplog.records)

    def test_non_object_json_is_fresh(self):
        ledger = parse_approval_ledger("[1, 2, 3]", "low-to-low")
        assert ledger.signatures == {}

    def test_stored_dao_flag_wins_over_current_transfer_type(self):
        raw = json.dumps({"requiresDAOApproval": True, "transferType": "high-to-low", "signatures": {}})
        ledger = parse_approval_ledger(raw, "low-to-low")
        assert ledger.requires_dao_approval is True
        assert next_approval_status(ledger) == "pending_dao"

    def test_missing_dao_flag_derived_from_stored_transfer_type(self):
        raw = json.dumps({"transferType": "high-to-low", "signatures": {}})
        ledger = parse_approval_ledger(raw, "low-to-low")
        assert ledger.requires_dao_approval is True

    def test_malformed_signature_entries_are_dropped(self):
        raw = json.dumps({
            "requiresDAOApproval": False,
            "signatures": {"approver": "not-a-record", "cpso": _sig("cpso").to_dict()},
        })
        ledger = parse_approval_ledger(raw, "low-to-low")
        assert set(ledger.signatures) == {"cpso"}
        assert next_approval_status(ledger) == "pending_approver"

    def test_unknown_keys_survive_round_trip(self):
        raw = json.dumps({"requiresDAOApproval": False, "signatures": {}, "legacyNote": "keep me"})
        ledger = parse_approval_ledger(raw, "low-to-low")
        assert ledger.to_dict()["legacyNote"] == "keep me"
