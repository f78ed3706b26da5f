"""
Installment Schedule Generator

Pure functions: same inputs, same schedule. No clock, no storage.

A purchase of N installments produces N parcels. Parcel 1 is due in the
purchase month, parcel k in the (k-1)th month after it, always on the
card's due day clamped to the month length. Month arithmetic anchors on
day 1 of the purchase month, so a purchase on Jan 31 never skips
February.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Union

from src.models.ledger import Installment
from src.utils.dates import add_months, clamp_day_of_month
from src.utils.money import floor_to_cent, quantize_money, to_decimal


def get_installment_due_date(purchase_date: date, installment_number: int, due_day: int) -> date:
    """Due date of parcel `installment_number` (1-based)."""
    anchor = date(purchase_date.year, purchase_date.month, 1)
    return add_months(anchor, installment_number - 1, day=due_day)


def get_closing_date_for_due_date(due_date: date, closing_day: int) -> date:
    """
    Closing date of the invoice a parcel belongs to.

    The invoice that contains a parcel closes in the month before it is due.
    """
    anchor = date(due_date.year, due_date.month, 1)
    return add_months(anchor, -1, day=closing_day)


def generate_installments(
    total_amount: Union[Decimal, int, float, str],
    count: int,
    purchase_date: date,
    closing_day: int,
    due_day: int,
) -> list[Installment]:
    """
    Split a purchase into `count` parcels.

    Every parcel but the last gets total/count floored to the cent; the
    last one absorbs the remainder, so the amounts always sum to the total.

    >>> [p.amount for p in generate_installments("100.00", 3, date(2025, 1, 5), 1, 10)]
    [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
    """
    if count < 1:
        return []
    if isinstance(purchase_date, datetime):
        purchase_date = purchase_date.date()

    total = to_decimal(total_amount)
    base = floor_to_cent(total / count)
    remainder = quantize_money(total - base * count)

    parcels = []
    for number in range(1, count + 1):
        amount = base + remainder if number == count else base
        due_date = get_installment_due_date(purchase_date, number, due_day)
        parcels.append(
            Installment(
                number=number,
                amount=amount,
                due_date=due_date,
                closing_date=get_closing_date_for_due_date(due_date, closing_day),
            )
        )
    return parcels


def split_current_and_future_invoices(
    installments: Iterable[Installment],
    today: date,
    due_day: int,
) -> tuple[list[Installment], list[Installment]]:
    """
    Partition parcels into the current invoice and future invoices.

    A parcel is in the current invoice when it is due on or before this
    month's due day (clamped to the month length).
    """
    if isinstance(today, datetime):
        today = today.date()
    reference = date(
        today.year,
        today.month,
        clamp_day_of_month(today.year, today.month, due_day),
    )
    current, future = [], []
    for parcel in installments:
        (current if parcel.due_date <= reference else future).append(parcel)
    return current, future
