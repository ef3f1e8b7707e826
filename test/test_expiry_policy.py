from datetime import datetime, timedelta, timezone

import pytest

from app.api.v1.model.voucher import Voucher
from app.api.v1.services.voucher.expiry_policy import ExpiryPolicy
from app.pedro.enums import DiscountType
from app.pedro.exception import VoucherExpired, VoucherInactive

NOW = datetime(2025, 11, 15, 8, 0, tzinfo=timezone.utc)


def _voucher(**overrides) -> Voucher:
    data = dict(
        code="TEST2025",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=10,
        valid_from=NOW - timedelta(days=1),
        expiry_date=NOW + timedelta(days=1),
    )
    data.update(overrides)
    return Voucher(**data)


def test_expiry_boundary_is_inclusive():
    expiry = NOW
    assert not ExpiryPolicy.is_expired(NOW - timedelta(hours=1), expiry, NOW)
    assert ExpiryPolicy.is_expired(NOW - timedelta(hours=1), expiry, NOW + timedelta(microseconds=1))


def test_is_active_requires_switch_and_window():
    assert ExpiryPolicy.is_active(_voucher(), NOW)
    assert not ExpiryPolicy.is_active(_voucher(is_active=False), NOW)
    assert not ExpiryPolicy.is_active(_voucher(valid_from=NOW + timedelta(minutes=1)), NOW)
    assert not ExpiryPolicy.is_active(_voucher(expiry_date=NOW - timedelta(minutes=1)), NOW)


def test_check_raises_specific_errors():
    with pytest.raises(VoucherInactive):
        ExpiryPolicy.check(_voucher(is_active=False), NOW)
    with pytest.raises(VoucherExpired):
        ExpiryPolicy.check(_voucher(expiry_date=NOW - timedelta(seconds=1)), NOW)
    with pytest.raises(VoucherInactive, match="not valid yet"):
        ExpiryPolicy.check(_voucher(valid_from=NOW + timedelta(hours=1)), NOW)
    ExpiryPolicy.check(_voucher(), NOW)


def test_naive_datetimes_are_treated_as_utc():
    voucher = _voucher(expiry_date=datetime(2025, 11, 16, 8, 0))
    assert voucher.expiry_date.tzinfo is not None
    assert ExpiryPolicy.is_active(voucher, NOW)
