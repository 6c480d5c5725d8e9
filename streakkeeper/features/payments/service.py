"""
Payment confirmations from the billing provider.

Each confirmation carries a transaction id; redeliveries of the same id are
acknowledged without granting anything again. Check, grant and recording
of an id happen under one lock, so concurrent redeliveries grant once.
The grant is persisted before the id is recorded, so a crash in between
can at worst re-grant shields (bounded by the bank cap), never lose a paid
one.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Optional

from streakkeeper.core.errors import ValidationError
from streakkeeper.core.idempotency import IdempotencyRegistry
from streakkeeper.core.logging import log_event
from streakkeeper.features.reconciliation.service import ReconciliationService
from streakkeeper.models.shield import Tier

logger = logging.getLogger("streakkeeper")

SHIELD_PURCHASE = "shield_purchase"
STREAK_REPAIR = "streak_repair"


@dataclass
class PurchaseResult:
    transaction_id: Optional[str]
    duplicate: bool
    shields_banked: int
    available_shields: int


@dataclass
class RepairPurchaseResult:
    transaction_id: str
    duplicate: bool
    repaired_date: Optional[date]


class PaymentEventHandler:
    def __init__(self, reconciliation: ReconciliationService, idempotency: Optional[IdempotencyRegistry] = None):
        self.reconciliation = reconciliation
        self.engine = reconciliation.engine
        self.idempotency = idempotency or IdempotencyRegistry(self.engine.repository)
        self._lock = threading.Lock()

    def shield_purchased(self, count: int, transaction_id: Optional[str] = None) -> PurchaseResult:
        with self._lock:
            if transaction_id is not None and self.idempotency.check_key(transaction_id, SHIELD_PURCHASE):
                log_event("info", "payment.duplicate", event_type="payment", extra={"transaction_id": transaction_id})
                return PurchaseResult(transaction_id, True, 0, self.engine.ledger.available_shields)

            banked = self.engine.purchase_shields(count)
            if transaction_id is not None:
                self.idempotency.check_and_set(transaction_id, SHIELD_PURCHASE)
        log_event(
            "info",
            "payment.shields_purchased",
            event_type="payment",
            extra={"transaction_id": transaction_id, "count": count, "banked": banked},
        )
        return PurchaseResult(transaction_id, False, banked, self.engine.ledger.available_shields)

    def pro_tier_changed(self, is_pro: bool) -> Tier:
        tier = Tier.PRO if is_pro else Tier.FREE
        self.engine.set_tier(tier)
        log_event("info", "payment.tier_changed", event_type="payment", extra={"tier": tier.value})
        return tier

    def streak_repair_purchased(self, transaction_id: str) -> RepairPurchaseResult:
        """Bank one shield for the repair and spend it on the break day.

        The repair step itself is idempotent, so a redelivery still retries it
        in case the first delivery crashed after banking.
        """
        if not transaction_id:
            raise ValidationError("transaction_id is required for a repair purchase")

        with self._lock:
            duplicate = self.idempotency.check_key(transaction_id, STREAK_REPAIR)
            if not duplicate:
                self.engine.purchase_shields(1)
                self.idempotency.check_and_set(transaction_id, STREAK_REPAIR)

        repaired = self.reconciliation.attempt_streak_repair()
        log_event(
            "info",
            "payment.repair_purchased",
            day=repaired.isoformat() if repaired else None,
            event_type="payment",
            extra={"transaction_id": transaction_id, "duplicate": duplicate},
        )
        return RepairPurchaseResult(transaction_id, duplicate, repaired)
