# Prometheus counters for the ledger. The failure counters are the
# out-of-band signal for best-effort writes (audit, notifications)
# that never fail the primary operation.

from prometheus_client import Counter

VISITS_RECORDED_TOTAL = Counter(
    "affiliate_visits_recorded_total",
    "Referral visits recorded",
)

REFERRALS_CREATED_TOTAL = Counter(
    "affiliate_referrals_created_total",
    "Referrals created by the attribution engine",
    ["status"],
)

COMMISSIONS_CREATED_TOTAL = Counter(
    "affiliate_commissions_created_total",
    "Commission ledger entries created",
    ["type"],
)

PAYOUT_TRANSITIONS_TOTAL = Counter(
    "affiliate_payout_transitions_total",
    "Payout request state changes",
    ["status"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "affiliate_audit_write_failures_total",
    "Audit log writes that failed and were skipped",
)

NOTIFICATION_FAILURES_TOTAL = Counter(
    "affiliate_notification_failures_total",
    "Payout notifications that could not be enqueued",
)


def record_payout_transition(status: str) -> None:
    PAYOUT_TRANSITIONS_TOTAL.labels(status=status).inc()
