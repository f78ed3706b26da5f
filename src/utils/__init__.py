"""Money and date helpers shared by the ledger components."""

from src.utils.dates import (
    Clock,
    add_months,
    add_weeks,
    add_years,
    as_local_datetime,
    clamp_day_of_month,
    days_in_month,
    end_of_local_day,
    end_of_month,
    end_of_year,
    local_now,
    start_of_local_day,
    start_of_month,
    start_of_year,
)
from src.utils.money import (
    CENT,
    ZERO,
    floor_to_cent,
    magnitude,
    quantize_money,
    to_cents,
    to_decimal,
)

__all__ = [
    # Dates
    "Clock",
    "add_months",
    "add_weeks",
    "add_years",
    "as_local_datetime",
    "clamp_day_of_month",
    "days_in_month",
    "end_of_local_day",
    "end_of_month",
    "end_of_year",
    "local_now",
    "start_of_local_day",
    "start_of_month",
    "start_of_year",
    # Money
    "CENT",
    "ZERO",
    "floor_to_cent",
    "magnitude",
    "quantize_money",
    "to_cents",
    "to_decimal",
]
