import os
import threading
from datetime import timedelta, timezone
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

import affiliate_ledger.core.payouts as payouts_module  # noqa: E402
import affiliate_ledger.notifications.payouts as payout_notifications  # noqa: E402
from affiliate_ledger.core.attribution import ConversionEvent, attribute_conversion  # noqa: E402
from affiliate_ledger.core.audit import Actor  # noqa: E402
from affiliate_ledger.core.commissions import record_direct_commission, unpaid_total  # noqa: E402
from affiliate_ledger.core.config import settings  # noqa: E402
from affiliate_ledger.core.errors import (  # noqa: E402
    AccessDenied,
    InsufficientBalance,
    InvalidAmount,
    InvalidField,
    InvalidTransition,
    PayoutContention,
)
from affiliate_ledger.core.payouts import (  # noqa: E402
    RetryPolicy,
    _backoff_seconds,
    advance_payout,
    list_payouts,
    request_payout,
    withdrawable_balance,
)
from affiliate_ledger.crud.commissions import list_commissions_for_affiliate  # noqa: E402
from affiliate_ledger.jobs.reconcile_totals import reconcile_totals  # noqa: E402
from affiliate_ledger.models.commissions import Commission  # noqa: E402
from affiliate_ledger.models.email_queue import EmailQueue  # noqa: E402
from affiliate_ledger.models.payouts import PayoutRequest  # noqa: E402
from tests.factories import make_affiliate, setup_db  # noqa: E402


ADMIN = Actor(user_id="admin-1", email="admin@example.com", role="admin")


def _funded_affiliate(db, *amounts, user_id=None):
    affiliate = make_affiliate(db, user_id=user_id)
    for index, amount in enumerate(amounts):
        record_direct_commission(db, affiliate.id, f"member-{index}", amount)
    return affiliate


def test_backoff_grows_exponentially():
    policy = RetryPolicy(max_attempts=3, base_delay_ms=20)
    assert _backoff_seconds(policy, 1) == pytest.approx(0.02)
    assert _backoff_seconds(policy, 2) == pytest.approx(0.04)
    assert _backoff_seconds(policy, 3) == pytest.approx(0.08)


def test_request_respects_minimum_and_balance(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_minimum.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "120.00")
        with pytest.raises(InvalidAmount):
            request_payout(db, affiliate.id, "49.99")
        with pytest.raises(InvalidAmount):
            request_payout(db, affiliate.id, "0")
        with pytest.raises(InsufficientBalance):
            request_payout(db, affiliate.id, "120.01")

        payout = request_payout(db, affiliate.id, "100.00")
        assert payout.status == "requested"
        assert payout.amount_requested == Decimal("100.00")
        assert payout.payout_method == "paypal"
        assert withdrawable_balance(db, affiliate.id) == Decimal("20.00")
        assert db.query(PayoutRequest).count() == 1


def test_minimum_is_configurable(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "payouts_min_config.db")
    monkeypatch.setattr(settings, "MIN_PAYOUT_AMOUNT", Decimal("5.00"))
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "10.00")
        payout = request_payout(db, affiliate.id, "7.50")
        assert payout.amount_requested == Decimal("7.50")


def test_concurrent_requests_cannot_overdraw(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_concurrent.db")
    with SessionLocal() as db:
        affiliate_id = _funded_affiliate(db, "200.00", "300.00").id

    barrier = threading.Barrier(2)
    outcomes = []

    def withdraw():
        with SessionLocal() as session:
            barrier.wait()
            try:
                request_payout(session, affiliate_id, "400.00")
                outcomes.append("ok")
            except InsufficientBalance:
                outcomes.append("insufficient")

    threads = [threading.Thread(target=withdraw) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["insufficient", "ok"]
    with SessionLocal() as db:
        assert db.query(PayoutRequest).count() == 1
        assert withdrawable_balance(db, affiliate_id) == Decimal("100.00")


def test_contended_requests_with_funds_never_report_insufficient(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "payouts_contended.db")
    monkeypatch.setattr(settings, "PAYOUT_RETRY_BASE_DELAY_MS", 1)
    with SessionLocal() as db:
        affiliate_id = _funded_affiliate(db, "5000.00").id

    barrier = threading.Barrier(8)
    outcomes = []

    def withdraw():
        with SessionLocal() as session:
            barrier.wait()
            try:
                request_payout(session, affiliate_id, "100.00")
                outcomes.append("ok")
            except PayoutContention:
                outcomes.append("contention")
            except InsufficientBalance:
                outcomes.append("insufficient")

    threads = [threading.Thread(target=withdraw) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(outcomes) == 8
    assert "insufficient" not in outcomes
    granted = outcomes.count("ok")
    assert granted >= 1
    with SessionLocal() as db:
        assert db.query(PayoutRequest).count() == granted
        assert withdrawable_balance(db, affiliate_id) == Decimal("5000.00") - Decimal("100.00") * granted


def test_exhausted_retries_with_funds_raise_contention(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "payouts_exhausted.db")
    monkeypatch.setattr(settings, "PAYOUT_RETRY_BASE_DELAY_MS", 0)
    attempts = []

    def always_stale(db, *, affiliate_id, expected_version):
        attempts.append(expected_version)
        return False

    monkeypatch.setattr(payouts_module, "bump_balance_version", always_stale)
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "1000.00")
        with pytest.raises(PayoutContention) as excinfo:
            request_payout(db, affiliate.id, "100.00")

        assert excinfo.value.code == "payout_contention"
        assert excinfo.value.status_code == 409
        assert excinfo.value.details["attempts"] == settings.PAYOUT_MAX_RETRIES
        assert len(attempts) == settings.PAYOUT_MAX_RETRIES
        assert db.query(PayoutRequest).count() == 0
        assert withdrawable_balance(db, affiliate.id) == Decimal("1000.00")


def test_exhausted_retries_after_funds_drained_raise_insufficient(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "payouts_drained.db")
    monkeypatch.setattr(settings, "PAYOUT_RETRY_BASE_DELAY_MS", 0)
    monkeypatch.setattr(settings, "PAYOUT_MAX_RETRIES", 1)
    with SessionLocal() as db:
        affiliate_id = _funded_affiliate(db, "150.00").id

    def rival_wins(db, *, affiliate_id, expected_version):
        with SessionLocal() as rival:
            rival.add(
                PayoutRequest(
                    affiliate_id=affiliate_id,
                    amount_requested=Decimal("100.00"),
                    status="requested",
                    payout_method="paypal",
                )
            )
            rival.commit()
        return False

    monkeypatch.setattr(payouts_module, "bump_balance_version", rival_wins)
    with SessionLocal() as db:
        with pytest.raises(InsufficientBalance) as excinfo:
            request_payout(db, affiliate_id, "100.00")
        assert excinfo.value.details["available"] == "50.00"


def test_completion_time_is_stored_as_naive_utc(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_completed_at.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "500.00")
        payout = request_payout(db, affiliate.id, "200.00")
        advance_payout(db, payout.id, "processing", actor=ADMIN)

        settled_utc = payout.requested_at + timedelta(hours=1)
        settled_local = settled_utc.replace(tzinfo=timezone.utc).astimezone(timezone(timedelta(hours=2)))
        done = advance_payout(db, payout.id, "completed", actor=ADMIN, completed_at=settled_local)
        assert done.completed_at.tzinfo is None
        assert done.completed_at == settled_utc
        rows = list_commissions_for_affiliate(db, affiliate_id=affiliate.id)
        paid = [row for row in rows if row.status == "paid"]
        assert [row.paid_at for row in paid] == [settled_utc]


def test_completion_time_before_request_is_rejected(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_completed_early.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "500.00")
        payout = request_payout(db, affiliate.id, "200.00")
        advance_payout(db, payout.id, "processing", actor=ADMIN)

        with pytest.raises(InvalidField) as excinfo:
            advance_payout(
                db,
                payout.id,
                "completed",
                actor=ADMIN,
                completed_at=payout.requested_at - timedelta(days=1),
            )
        assert excinfo.value.details["field"] == "completed_at"
        db.refresh(payout)
        assert payout.status == "processing"
        assert payout.completed_at is None
        assert unpaid_total(db, affiliate.id) == Decimal("500.00")


def test_completed_payout_cannot_complete_again(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_terminal.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "500.00")
        payout = request_payout(db, affiliate.id, "200.00")
        advance_payout(db, payout.id, "processing", actor=ADMIN)
        done = advance_payout(db, payout.id, "completed", actor=ADMIN, transaction_id="txn-1")
        assert done.status == "completed"
        assert done.completed_at is not None
        assert done.transaction_id == "txn-1"

        db.refresh(affiliate)
        balance_before = affiliate.available_balance
        unpaid_before = unpaid_total(db, affiliate.id)

        with pytest.raises(InvalidTransition):
            advance_payout(db, payout.id, "completed", actor=ADMIN)
        with pytest.raises(InvalidTransition):
            advance_payout(db, payout.id, "failed", actor=ADMIN)

        db.refresh(affiliate)
        assert affiliate.available_balance == balance_before == Decimal("300.00")
        assert unpaid_total(db, affiliate.id) == unpaid_before == Decimal("300.00")


def test_requested_cannot_skip_processing(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_skip.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "100.00")
        payout = request_payout(db, affiliate.id, "60.00")
        with pytest.raises(InvalidTransition):
            advance_payout(db, payout.id, "completed", actor=ADMIN)
        with pytest.raises(InvalidTransition):
            advance_payout(db, payout.id, "requested", actor=ADMIN)
        db.refresh(payout)
        assert payout.status == "requested"


def test_completion_settles_oldest_first_and_splits(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_split.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "100.00", "100.00")
        payout = request_payout(db, affiliate.id, "150.00")
        advance_payout(db, payout.id, "processing", actor=ADMIN)
        advance_payout(db, payout.id, "completed", actor=ADMIN)

        rows = sorted(list_commissions_for_affiliate(db, affiliate_id=affiliate.id), key=lambda c: c.id)
        assert [(row.amount, row.status) for row in rows] == [
            (Decimal("100.00"), "paid"),
            (Decimal("50.00"), "paid"),
            (Decimal("50.00"), "unpaid"),
        ]
        assert rows[0].payout_id == payout.id
        assert rows[1].payout_id == payout.id
        assert rows[2].split_from_id == rows[1].id
        assert rows[2].payout_id is None

        db.refresh(affiliate)
        assert affiliate.available_balance == Decimal("50.00")
        assert affiliate.total_earnings == Decimal("200.00")
        assert withdrawable_balance(db, affiliate.id) == Decimal("50.00")


def test_split_referral_commission_keeps_its_total(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_split_referral.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, commission_rate="10.00")
        result = attribute_conversion(
            db,
            ConversionEvent(order_id="ORD-SPLIT", order_amount="1000.00", referral_code=affiliate.code),
        )
        payout = request_payout(db, affiliate.id, "60.00")
        advance_payout(db, payout.id, "processing", actor=ADMIN)
        advance_payout(db, payout.id, "completed", actor=ADMIN)

        original = db.get(Commission, result.commission.id)
        remainder = db.query(Commission).filter(Commission.split_from_id == original.id).one()
        assert original.referral_id == result.referral.id
        assert (original.amount, original.status) == (Decimal("60.00"), "paid")
        assert (remainder.amount, remainder.status) == (Decimal("40.00"), "unpaid")
        assert remainder.referral_id is None
        assert original.amount + remainder.amount == result.referral.commission_amount

        db.refresh(affiliate)
        assert affiliate.total_earnings == Decimal("100.00")
        assert reconcile_totals(db) == []


def test_failed_payout_releases_reservation(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_failed.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "500.00")
        payout = request_payout(db, affiliate.id, "400.00")
        assert withdrawable_balance(db, affiliate.id) == Decimal("100.00")

        failed = advance_payout(db, payout.id, "failed", actor=ADMIN, notes="bounced")
        assert failed.failed_at is not None
        assert failed.notes == "bounced"
        assert withdrawable_balance(db, affiliate.id) == Decimal("500.00")
        again = request_payout(db, affiliate.id, "400.00")
        assert [item.id for item in list_payouts(db, affiliate.id)] == [again.id, payout.id]


def test_transitions_enqueue_notifications_once(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_notify.db")
    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "100.00")
        payout = request_payout(db, affiliate.id, "80.00")
        assert db.query(EmailQueue).count() == 0

        advance_payout(db, payout.id, "processing", actor=ADMIN)
        advance_payout(db, payout.id, "completed", actor=ADMIN)

        emails = db.query(EmailQueue).order_by(EmailQueue.id).all()
        assert [email.dedupe_key for email in emails] == [
            f"payout:{payout.id}:processing",
            f"payout:{payout.id}:completed",
        ]
        assert emails[0].to_email == affiliate.email
        assert emails[1].metadata_json == {
            "affiliate_email": affiliate.email,
            "status": "completed",
            "amount": "80.00",
            "affiliate_code": affiliate.code,
        }

        duplicate = payout_notifications.notify_payout_status(db, payout, affiliate)
        assert duplicate is None
        assert db.query(EmailQueue).count() == 2


def test_notification_failure_does_not_undo_transition(tmp_path, monkeypatch):
    SessionLocal = setup_db(tmp_path / "payouts_notify_fail.db")

    def broken_outbox(*_args, **_kwargs):
        raise RuntimeError("smtp relay unavailable")

    with SessionLocal() as db:
        affiliate = _funded_affiliate(db, "100.00")
        payout = request_payout(db, affiliate.id, "80.00")
        monkeypatch.setattr(payout_notifications, "create_email_queue", broken_outbox)

        advanced = advance_payout(db, payout.id, "processing", actor=ADMIN)
        assert advanced.status == "processing"
        db.refresh(payout)
        assert payout.status == "processing"
        assert db.query(EmailQueue).count() == 0


def test_payout_capabilities(tmp_path):
    SessionLocal = setup_db(tmp_path / "payouts_access.db")
    with SessionLocal() as db:
        mine = _funded_affiliate(db, "100.00", user_id="u-1")
        theirs = _funded_affiliate(db, "100.00", user_id="u-2")
        owner = Actor(user_id="u-1", email="one@example.com", role="affiliate")
        legacy_role = Actor(user_id="u-1", email="one@example.com", role="agent")

        with pytest.raises(AccessDenied):
            request_payout(db, theirs.id, "60.00", actor=owner)

        payout = request_payout(db, mine.id, "60.00", actor=legacy_role)
        with pytest.raises(AccessDenied):
            advance_payout(db, payout.id, "processing", actor=owner)

        advanced = advance_payout(db, payout.id, "processing", actor=ADMIN)
        assert advanced.status == "processing"
