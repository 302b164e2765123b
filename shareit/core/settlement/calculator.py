"""Deposit settlement arithmetic.

Pure functions only; nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from shareit.common.enums import ResolutionType, ViolationStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

SETTLEABLE_RESOLUTIONS = frozenset({ResolutionType.UPHOLD_CLAIM, ResolutionType.COMPROMISE})


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SettlementQuote:
    deposit_amount: Decimal
    penalty_amount: Decimal
    refund_amount: Decimal
    uncovered_penalty: Decimal

    @property
    def fully_covered(self) -> bool:
        return self.uncovered_penalty == ZERO


def compute_settlement(
    deposit_per_unit: Decimal | int | float | str,
    quantity: int,
    penalty_amount: Decimal | int | float | str,
) -> SettlementQuote:
    """refund = deposit_per_unit * quantity - penalty, floored at zero.

    A penalty larger than the deposit leaves the excess in
    ``uncovered_penalty`` instead of producing a negative refund.
    """
    if quantity < 0:
        raise ValueError("quantity cannot be negative")
    deposit = to_money(to_money(deposit_per_unit) * quantity)
    penalty = to_money(penalty_amount)
    if penalty < ZERO:
        raise ValueError("penalty_amount cannot be negative")

    raw_refund = deposit - penalty
    if raw_refund < ZERO:
        return SettlementQuote(deposit, penalty, ZERO, -raw_refund)
    return SettlementQuote(deposit, penalty, raw_refund, ZERO)


def is_settlement_eligible(status: str, resolution_type: str | None = None) -> bool:
    if status == ViolationStatus.CUSTOMER_ACCEPTED.value:
        return True
    if status == ViolationStatus.RESOLVED.value and resolution_type is not None:
        try:
            return ResolutionType(resolution_type) in SETTLEABLE_RESOLUTIONS
        except ValueError:
            return False
    return False
