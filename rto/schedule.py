from dataclasses import dataclass
from datetime import date
from typing import List

from dateutil.relativedelta import relativedelta

from .exceptions import InvalidTermsError

WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"

CADENCE_STEPS = {
    WEEKLY: relativedelta(weeks=1),
    BIWEEKLY: relativedelta(weeks=2),
    MONTHLY: relativedelta(months=1),
}

DEFAULT_PLATFORM_FEE_BPS = 200
DEFAULT_MAX_PAYMENTS = 36
MAX_REMAINDER_DRIFT = 1


@dataclass(frozen=True)
class PaymentSpec:
    payment_number: int
    total_amount: int
    equity_portion: int
    rental_portion: int
    platform_fee: int
    lender_payout: int
    due_date: date


def divide_half_up(numerator: int, denominator: int) -> int:
    """Integer division of non-negative values, rounding halves up."""

    return (2 * numerator + denominator) // (2 * denominator)


def due_date_for(first_payment_date: date, cadence: str, index: int) -> date:
    # Offsets are taken from the first date so month-end dates do not drift.
    try:
        step = CADENCE_STEPS[cadence]
    except KeyError:
        raise InvalidTermsError(f"Unsupported cadence: {cadence!r}") from None
    return first_payment_date + step * index


def split_payment(equity: int, rental_credit_percent: int, platform_fee_bps: int):
    total = divide_half_up(equity * 100, rental_credit_percent)
    fee = divide_half_up(total * platform_fee_bps, 10_000)
    return total, total - equity, fee, total - fee


def validate_terms(
    purchase_price: int,
    total_payments: int,
    rental_credit_percent: int,
    cadence: str,
    max_payments: int = DEFAULT_MAX_PAYMENTS,
) -> None:
    for name, value in (
        ("purchase_price", purchase_price),
        ("total_payments", total_payments),
        ("rental_credit_percent", rental_credit_percent),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidTermsError(f"{name} must be an integer")
    if purchase_price <= 0:
        raise InvalidTermsError("Purchase price must be positive.")
    if not 1 <= total_payments <= max_payments:
        raise InvalidTermsError(
            f"Number of payments must be between 1 and {max_payments}."
        )
    if not 0 < rental_credit_percent <= 100:
        raise InvalidTermsError("Rental credit percent must be in (0, 100].")
    if cadence not in CADENCE_STEPS:
        raise InvalidTermsError(
            f"Cadence must be one of {', '.join(sorted(CADENCE_STEPS))}."
        )


def generate_schedule(
    purchase_price: int,
    total_payments: int,
    rental_credit_percent: int,
    cadence: str,
    first_payment_date: date,
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
    max_payments: int = DEFAULT_MAX_PAYMENTS,
) -> List[PaymentSpec]:
    """Build the ordered payment obligations for a rent-to-own contract.

    All amounts are integer minor units. Every payment carries the same
    equity share, rounded half up; the final payment absorbs whatever
    remainder is needed for the equity to sum to ``purchase_price`` exactly.
    Terms where that remainder would move the final payment by more than one
    minor unit are rejected.
    """

    validate_terms(
        purchase_price, total_payments, rental_credit_percent, cadence, max_payments
    )

    equity = divide_half_up(purchase_price, total_payments)
    last_equity = purchase_price - equity * (total_payments - 1)
    if equity <= 0 or last_equity <= 0:
        raise InvalidTermsError(
            "Purchase price is too small to spread over "
            f"{total_payments} payments."
        )
    # The final payment may differ from the others by at most one minor unit.
    if abs(last_equity - equity) > MAX_REMAINDER_DRIFT:
        raise InvalidTermsError(
            f"Purchase price {purchase_price} cannot be split into "
            f"{total_payments} equal payments; choose a different number of payments."
        )

    schedule = []
    for idx in range(1, total_payments + 1):
        equity_portion = last_equity if idx == total_payments else equity
        total, rental, fee, payout = split_payment(
            equity_portion, rental_credit_percent, platform_fee_bps
        )
        schedule.append(
            PaymentSpec(
                payment_number=idx,
                total_amount=total,
                equity_portion=equity_portion,
                rental_portion=rental,
                platform_fee=fee,
                lender_payout=payout,
                due_date=due_date_for(first_payment_date, cadence, idx - 1),
            )
        )
    return schedule
