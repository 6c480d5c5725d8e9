from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime

import pytest

from streakkeeper.core.errors import ValidationError
from streakkeeper.features.shields.ledger import ShieldLedger, max_banked
from streakkeeper.models.shield import ShieldState, Tier


def test_first_refill_grants_allocation():
    ledger = ShieldLedger()

    assert ledger.refill_if_needed(now=date(2026, 10, 17)) is True
    assert ledger.available_shields == 2
    assert ledger.state.last_refill_date == date(2026, 10, 17)


def test_refill_is_idempotent_within_month():
    ledger = ShieldLedger()
    ledger.refill_if_needed(now=datetime(2026, 10, 1, 0, 5))
    ledger.consume()

    assert ledger.refill_if_needed(now=datetime(2026, 10, 31, 23, 59)) is False
    assert ledger.available_shields == 1


def test_refill_next_month_resets_usage_and_caps():
    ledger = ShieldLedger(ShieldState(available_shields=1, last_refill_date=date(2026, 9, 20), shields_used_this_month=3))

    assert ledger.refill_if_needed(now=date(2026, 10, 1)) is True
    state = ledger.state
    assert state.available_shields == 2
    assert state.shields_used_this_month == 0


def test_refill_never_lowers_bank():
    # Bank from a pro period, now on free: surplus is kept
    ledger = ShieldLedger(ShieldState(available_shields=6, last_refill_date=date(2026, 9, 1), tier=Tier.FREE))

    ledger.refill_if_needed(now=date(2026, 10, 1))

    assert ledger.available_shields == 6


def test_pro_tier_allocation_and_cap():
    ledger = ShieldLedger(ShieldState(available_shields=6, last_refill_date=date(2026, 9, 1)))
    ledger.set_tier(Tier.PRO)

    ledger.refill_if_needed(now=date(2026, 10, 1))

    assert ledger.available_shields == 8
    assert max_banked("pro") == 8


def test_consume_counts_usage():
    ledger = ShieldLedger(ShieldState(available_shields=1))

    assert ledger.consume() is True
    assert ledger.consume() is False

    state = ledger.state
    assert state.available_shields == 0
    assert state.shields_used_this_month == 1
    assert state.total_shields_used == 1


def test_consume_is_atomic():
    ledger = ShieldLedger(ShieldState(available_shields=5))

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: ledger.consume(), range(50)))

    assert results.count(True) == 5
    assert ledger.available_shields == 0


def test_purchase_caps_bank_but_counts_purchase():
    ledger = ShieldLedger(ShieldState(available_shields=1))

    banked = ledger.add_purchased(3)

    state = ledger.state
    assert banked == 1
    assert state.available_shields == 2
    assert state.purchased_shields == 3
    assert ledger.can_buy_more is False


@pytest.mark.parametrize("count", [0, -2, 1.0, True])
def test_purchase_rejects_bad_counts(count):
    ledger = ShieldLedger()

    with pytest.raises(ValidationError):
        ledger.add_purchased(count)
    assert ledger.state.purchased_shields == 0


def test_cap_holds_across_mixed_operations():
    ledger = ShieldLedger()
    months = [date(2026, m, 1) for m in range(1, 13)]

    for i, month in enumerate(months):
        ledger.refill_if_needed(now=month)
        ledger.add_purchased(i % 3 + 1)
        if i % 2:
            ledger.consume()
        assert 0 <= ledger.available_shields <= max_banked(ledger.tier)


def test_low_threshold_and_next_refill():
    ledger = ShieldLedger(ShieldState(available_shields=1))

    assert ledger.is_low(1) is True
    assert ledger.is_low(0) is False
    assert ledger.next_refill_date(date(2026, 12, 31)) == date(2027, 1, 1)
