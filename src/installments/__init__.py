"""Credit card installment schedules."""

from src.installments.generator import (
    generate_installments,
    get_closing_date_for_due_date,
    get_installment_due_date,
    split_current_and_future_invoices,
)

__all__ = [
    "generate_installments",
    "get_closing_date_for_due_date",
    "get_installment_due_date",
    "split_current_and_future_invoices",
]
