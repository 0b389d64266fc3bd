from uuid import uuid4

from app.models.audit_log import AuditLog
from app.services.audit import model_snapshot, record_audit_log
from conftest import make_withdrawal


def test_snapshot_stringifies_token_amounts() -> None:
    withdrawal = make_withdrawal(amount=2**80)
    snapshot = model_snapshot(withdrawal, exclude={"created_at"})
    assert snapshot["amount"] == str(2**80)
    assert snapshot["status"] == "Requested"
    assert "created_at" not in snapshot


def test_status_change_leads_the_summary(fake_db) -> None:
    actor = uuid4()
    entry = record_audit_log(
        fake_db,
        actor_id=actor,
        action="withdrawal.refund_approved",
        resource_type="withdrawal",
        resource_id="w-1",
        old_value={"status": "Failed", "failure_refund_approved_date": None},
        new_value={"status": "RefundApproved", "failure_refund_approved_date": "2024-01-02T00:00:00+00:00"},
    )
    assert fake_db.added_of(AuditLog) == [entry]
    assert entry.summary == "withdrawal.refund_approved: status Failed->RefundApproved (+1 fields)"
    assert entry.changes["status"] == {"from": "Failed", "to": "RefundApproved"}


def test_summary_without_status_lists_changed_fields(fake_db) -> None:
    entry = record_audit_log(
        fake_db,
        actor_id=None,
        action="platform_config.updated",
        resource_type="platform_config",
        resource_id="1",
        old_value={"loan_max_ltv_ratio": "0.75", "loan_min_ltv_ratio": "0.6"},
        new_value={"loan_max_ltv_ratio": "0.8", "loan_min_ltv_ratio": "0.6"},
    )
    assert entry.summary == "platform_config.updated: loan_max_ltv_ratio"


def test_identical_snapshots_record_no_changes(fake_db) -> None:
    entry = record_audit_log(
        fake_db,
        actor_id=None,
        action="loan.originated",
        resource_type="loan",
        resource_id="l-1",
        old_value={"status": "Originated"},
        new_value={"status": "Originated"},
    )
    assert entry.changes is None
    assert entry.summary == "loan.originated"
