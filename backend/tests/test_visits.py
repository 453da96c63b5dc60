import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from affiliate_ledger.core import affiliates as registry  # noqa: E402
from affiliate_ledger.core.errors import NotFound, UnknownReferralCode  # noqa: E402
from affiliate_ledger.core.visits import (  # noqa: E402
    detect_browser,
    detect_device_type,
    mark_converted,
    record_visit,
)
from affiliate_ledger.models.visits import Visit  # noqa: E402
from tests.factories import make_affiliate, setup_db  # noqa: E402


CHROME_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_DESKTOP = CHROME_DESKTOP + " Edg/120.0.2210.91"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
FIREFOX_ANDROID = "Mozilla/5.0 (Android 14; Mobile; rv:121.0) Gecko/121.0 Firefox/121.0"


@pytest.mark.parametrize(
    "user_agent,device,browser",
    [
        (CHROME_DESKTOP, "desktop", "Chrome"),
        (EDGE_DESKTOP, "desktop", "Edge"),
        (SAFARI_IPHONE, "mobile", "Safari"),
        (FIREFOX_ANDROID, "mobile", "Firefox"),
        ("curl/8.4.0", "desktop", "Other"),
        (None, "desktop", "Other"),
    ],
)
def test_user_agent_detection(user_agent, device, browser):
    assert detect_device_type(user_agent) == device
    assert detect_browser(user_agent) == browser


def test_record_visit_stores_metadata_and_bumps_total(tmp_path):
    SessionLocal = setup_db(tmp_path / "visits.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        visit = record_visit(
            db,
            affiliate.code.lower(),
            {
                "referrer": "https://news.example.com",
                "page_url": "https://shop.example.com/?ref=x",
                "user_agent": SAFARI_IPHONE,
                "ip_address": "203.0.113.9",
                "country": "gb",
            },
        )
        assert visit.affiliate_id == affiliate.id
        assert visit.converted is False
        assert visit.device_type == "mobile"
        assert visit.browser == "Safari"
        assert visit.country == "GB"
        assert visit.link_id is None

        db.refresh(affiliate)
        assert affiliate.total_visits == 1


def test_record_visit_through_tracking_link(tmp_path):
    SessionLocal = setup_db(tmp_path / "visits_link.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        link = registry.create_link(db, affiliate.id, "Podcast")
        visit = record_visit(db, link.code, {"user_agent": CHROME_DESKTOP})
        assert visit.affiliate_id == affiliate.id
        assert visit.link_id == link.id


def test_unknown_code_persists_nothing(tmp_path):
    SessionLocal = setup_db(tmp_path / "visits_unknown.db")
    with SessionLocal() as db:
        make_affiliate(db)
        with pytest.raises(UnknownReferralCode):
            record_visit(db, "AF-NOBODY0000", {"user_agent": CHROME_DESKTOP})
        with pytest.raises(UnknownReferralCode):
            record_visit(db, "", {})
        assert db.query(Visit).count() == 0


def test_visits_are_recorded_for_suspended_affiliates(tmp_path):
    SessionLocal = setup_db(tmp_path / "visits_suspended.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        registry.set_status(db, affiliate.id, "suspended")
        visit = record_visit(db, affiliate.code, {})
        assert visit.affiliate_id == affiliate.id


def test_mark_converted_is_idempotent(tmp_path):
    SessionLocal = setup_db(tmp_path / "visits_convert.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        visit = record_visit(db, affiliate.code, {})

        first = mark_converted(db, visit.id)
        assert first.converted is True
        second = mark_converted(db, visit.id)
        assert second.converted is True
        assert db.query(Visit).filter(Visit.converted.is_(True)).count() == 1

        with pytest.raises(NotFound):
            mark_converted(db, 12345)
