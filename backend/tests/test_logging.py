import logging
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from fastapi.testclient import TestClient  # noqa: E402

from affiliate_ledger.core.logging import JsonLogFormatter  # noqa: E402
from affiliate_ledger.main import app  # noqa: E402
from tests.factories import setup_db  # noqa: E402


def _request_records(caplog):
    return [record for record in caplog.records if record.getMessage() == "request.completed"]


def test_logging_includes_request_id_and_user(caplog):
    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        response = client.get(
            "/ping",
            headers={"X-Request-ID": "req-123", "X-User-Id": "u-42"},
        )
        assert response.status_code == 200
        assert response.headers.get("X-Request-ID") == "req-123"

        records = _request_records(caplog)
        assert records, "Expected a structured request log entry"
        entry = records[-1]
        assert getattr(entry, "request_id", None) == "req-123"
        assert getattr(entry, "user_id", None) == "u-42"
        assert getattr(entry, "route", None) == "/ping"
        assert getattr(entry, "status_code", None) == 200
        assert getattr(entry, "error_code", "missing") is None
    finally:
        logger.removeHandler(caplog.handler)


def test_logging_carries_ledger_error_code(caplog, tmp_path):
    setup_db(tmp_path / "logging_errors.db")
    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        response = client.post("/api/visits", json={"code": "AF-NOPE0000"})
        assert response.status_code == 404

        entry = _request_records(caplog)[-1]
        assert getattr(entry, "error_code", None) == "unknown_referral_code"
        assert getattr(entry, "route", None) == "/api/visits"
    finally:
        logger.removeHandler(caplog.handler)


def test_json_formatter_keeps_extra_fields():
    record = logging.LogRecord("api_logger", logging.INFO, __file__, 1, "request.completed", None, None)
    record.request_id = "req-9"
    record.duration_ms = 1.5
    record.campaign = None
    rendered = JsonLogFormatter().format(record)
    assert '"request_id":"req-9"' in rendered
    assert '"duration_ms":1.5' in rendered
    assert '"campaign"' not in rendered
    assert '"message":"request.completed"' in rendered
