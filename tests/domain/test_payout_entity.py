from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.order.pricing import SellerSplit
from domain.payout.entity import FeeSchedule, PayoutStatus, compute_fees, derive_payouts


def _payouts(**schedule):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    splits = [
        SellerSplit(seller_id="s1", seller_name="Hill Treks", amount=2000, discount_share=200),
        SellerSplit(seller_id="s2", seller_name="River Rafting", amount=400, discount_share=40),
    ]
    return now, derive_payouts("o1", splits, FeeSchedule(**schedule), now=now)


def test_fees_round_half_up():
    # 5% of 1010 = 50.5
    assert compute_fees(1010, FeeSchedule()) == (51, 959)


def test_net_never_negative():
    assert compute_fees(10, FeeSchedule(processing_fee=100)) == (1, 0)


def test_derive_one_payout_per_seller():
    now, payouts = _payouts()
    assert [(p.seller_id, p.gross_amount, p.platform_fee, p.net_amount) for p in payouts] == [
        ("s1", 1800, 90, 1710),
        ("s2", 360, 18, 342),
    ]
    for p in payouts:
        assert p.status == PayoutStatus.PENDING
        assert p.order_ids == ["o1"]
        assert p.settlement_start == now
        assert p.settlement_end == now + timedelta(days=7)
        assert p.net_amount == p.gross_amount - p.platform_fee - p.processing_fee


def test_processing_fee_and_window_from_schedule():
    _, payouts = _payouts(platform_fee_percent=Decimal("10"), processing_fee=5, settlement_window_days=3)
    p = payouts[0]
    assert (p.platform_fee, p.processing_fee, p.net_amount) == (180, 5, 1615)
    assert p.settlement_end - p.settlement_start == timedelta(days=3)


def test_invalid_schedule_rejected():
    with pytest.raises(DomainValidationException):
        FeeSchedule(platform_fee_percent=Decimal("101"))


def test_mark_processing_then_transfer_completes():
    _, (payout, _) = _payouts()
    payout.mark_processing("trf_1")
    assert payout.status == PayoutStatus.PROCESSING
    assert payout.transfer_id == "trf_1"
    assert payout.apply_transfer_processed()
    assert payout.status == PayoutStatus.COMPLETED
    assert not payout.apply_transfer_processed()
    assert not payout.apply_transfer_failed("late")


def test_mark_processing_only_from_pending():
    _, (payout, _) = _payouts()
    payout.reverse("Order cancelled")
    with pytest.raises(InvalidTransitionException):
        payout.mark_processing("trf_1")


def test_mark_processing_requires_transfer_id():
    _, (payout, _) = _payouts()
    with pytest.raises(DomainValidationException):
        payout.mark_processing("")


def test_transfer_failure_records_reason():
    _, (payout, _) = _payouts()
    payout.mark_processing("trf_1")
    assert payout.apply_transfer_failed(None)
    assert payout.status == PayoutStatus.FAILED
    assert payout.failure_reason == "Transfer failed"


def test_reverse_only_pending():
    _, (payout, other) = _payouts()
    assert payout.reverse("Order cancelled")
    assert payout.status == PayoutStatus.REVERSED
    other.mark_processing("trf_2")
    assert not other.reverse("Order cancelled")
    assert other.status == PayoutStatus.PROCESSING
