import os
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from affiliate_ledger.core import affiliates as registry  # noqa: E402
from affiliate_ledger.core.attribution import ConversionEvent, attribute_conversion  # noqa: E402
from affiliate_ledger.core.commissions import (  # noqa: E402
    commission_for,
    record_direct_commission,
    unpaid_total,
)
from affiliate_ledger.core.errors import AffiliateInactive, InvalidAmount, InvalidField  # noqa: E402
from affiliate_ledger.core.money import calc_commission, money2, to_money  # noqa: E402
from affiliate_ledger.models.commissions import Commission  # noqa: E402
from tests.factories import make_affiliate, setup_db  # noqa: E402


def test_commission_math_rounds_half_up():
    assert calc_commission(Decimal("1500.00"), Decimal("15")) == Decimal("225.00")
    assert calc_commission(Decimal("10.05"), Decimal("50")) == Decimal("5.03")
    assert calc_commission(Decimal("0"), Decimal("25")) == Decimal("0.00")
    assert money2(Decimal("2.675")) == Decimal("2.68")


def test_to_money_rejects_non_numbers():
    assert to_money("12.3") == Decimal("12.30")
    for bad in ("abc", True, "NaN", "Infinity", None):
        with pytest.raises(InvalidAmount):
            to_money(bad)


def test_commission_for_does_not_double_apply(tmp_path):
    SessionLocal = setup_db(tmp_path / "commissions_idem.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        result = attribute_conversion(
            db,
            ConversionEvent(order_id="ORD-9", order_amount="250.00", referral_code=affiliate.code),
        )
        again = commission_for(db, result.referral)
        db.commit()
        assert again.id == result.commission.id
        assert db.query(Commission).count() == 1

        db.refresh(affiliate)
        assert affiliate.total_earnings == Decimal("25.00")
        assert affiliate.available_balance == Decimal("25.00")


def test_direct_commission_updates_balance(tmp_path):
    SessionLocal = setup_db(tmp_path / "commissions_direct.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        first = record_direct_commission(db, affiliate.id, "member-1", "19.99", type="recurring")
        record_direct_commission(db, affiliate.id, "member-2", Decimal("0.01"))

        assert first.referral_id is None
        assert first.type == "recurring"
        assert first.status == "unpaid"
        assert unpaid_total(db, affiliate.id) == Decimal("20.00")

        db.refresh(affiliate)
        assert affiliate.total_earnings == Decimal("20.00")
        assert affiliate.available_balance == Decimal("20.00")


def test_direct_commission_validation(tmp_path):
    SessionLocal = setup_db(tmp_path / "commissions_invalid.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db)
        with pytest.raises(InvalidAmount):
            record_direct_commission(db, affiliate.id, "member-1", "-1.00")
        with pytest.raises(InvalidField):
            record_direct_commission(db, affiliate.id, "member-1", "5.00", type="bonus")

        registry.set_status(db, affiliate.id, "suspended")
        with pytest.raises(AffiliateInactive):
            record_direct_commission(db, affiliate.id, "member-1", "5.00")
        assert db.query(Commission).count() == 0
