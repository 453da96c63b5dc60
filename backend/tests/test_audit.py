import os
from datetime import datetime
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

import affiliate_ledger.core.audit as audit_module  # noqa: E402
from affiliate_ledger.core.audit import Actor  # noqa: E402
from affiliate_ledger.core.commissions import record_direct_commission  # noqa: E402
from affiliate_ledger.core.metrics import AUDIT_WRITE_FAILURES_TOTAL  # noqa: E402
from affiliate_ledger.core.payouts import request_payout  # noqa: E402
from affiliate_ledger.crud.audit import list_audit_logs  # noqa: E402
from affiliate_ledger.models.affiliates import Affiliate  # noqa: E402
from affiliate_ledger.models.audit_logs import AuditLog  # noqa: E402
from tests.factories import make_affiliate, setup_db  # noqa: E402


def test_record_serializes_money_and_timestamps(tmp_path):
    SessionLocal = setup_db(tmp_path / "audit_record.db")
    with SessionLocal() as db:
        actor = Actor(user_id="admin-1", email="admin@example.com", role="admin", ip_address="198.51.100.4")
        entry = audit_module.record(
            db,
            actor,
            "commission_recorded",
            {"amount": Decimal("12.50"), "at": datetime(2024, 5, 1, 12, 0, 0)},
        )
        assert entry is not None
        assert entry.actor_user_id == "admin-1"
        assert entry.actor_role == "admin"
        assert entry.ip_address == "198.51.100.4"
        assert entry.context == {"amount": "12.50", "at": "2024-05-01T12:00:00"}

        override = audit_module.record(db, actor, "payout_requested", {}, origin="192.0.2.1")
        assert override.ip_address == "192.0.2.1"


def test_system_actor_leaves_actor_fields_empty(tmp_path):
    SessionLocal = setup_db(tmp_path / "audit_system.db")
    with SessionLocal() as db:
        entry = audit_module.record(db, Actor.system(), "leaderboard_recomputed", {"affiliates_updated": 0})
        assert entry.actor_user_id is None
        assert entry.actor_email is None
        assert entry.actor_role is None

        implicit = audit_module.record(db, None, "totals_reconciled")
        assert implicit.actor_role is None
        assert implicit.context == {}


def test_impersonated_action_records_both_identities(tmp_path):
    SessionLocal = setup_db(tmp_path / "audit_impersonation.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, user_id="u-9")
        record_direct_commission(db, affiliate.id, "member-1", "75.00")
        acting_as = Actor(
            user_id="u-9",
            email="affiliate@example.com",
            role="affiliate",
            impersonator_id="admin-2",
            impersonator_email="support@example.com",
        )
        request_payout(db, affiliate.id, "60.00", actor=acting_as)

        entry = list_audit_logs(db, action="payout_requested")[0]
        assert entry.actor_user_id == "u-9"
        assert entry.actor_role == "affiliate"
        assert entry.context["amount"] == "60.00"
        assert entry.context["impersonated_by"] == {
            "user_id": "admin-2",
            "email": "support@example.com",
        }


def test_audit_failure_does_not_roll_back_action(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "audit_failure.db")

    def broken_audit(*_args, **_kwargs):
        raise RuntimeError("audit store offline")

    monkeypatch.setattr(audit_module, "create_audit_log", broken_audit)
    before = AUDIT_WRITE_FAILURES_TOTAL._value.get()
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        assert db.query(Affiliate).filter(Affiliate.id == affiliate.id).count() == 1
        assert db.query(AuditLog).count() == 0
    assert AUDIT_WRITE_FAILURES_TOTAL._value.get() == before + 1


def test_list_audit_logs_filters_and_orders_newest_first(tmp_path):
    SessionLocal = setup_db(tmp_path / "audit_list.db")
    with SessionLocal() as db:
        admin = Actor(user_id="admin-1", email="admin@example.com", role="admin")
        first = audit_module.record(db, admin, "payout_processing", {"payout_id": 1})
        second = audit_module.record(db, admin, "payout_processing", {"payout_id": 2})
        audit_module.record(db, Actor(user_id="u-1", role="affiliate"), "payout_requested")

        rows = list_audit_logs(db, action="payout_processing")
        assert [row.id for row in rows] == [second.id, first.id]
        assert len(list_audit_logs(db, actor_user_id="u-1")) == 1
