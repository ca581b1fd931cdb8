"""
Monthly enhancement items: which enhancements raise a quote's monthly total,
and by how much. Shared by the engine totals and the display merge so both
always agree.
"""

from __future__ import annotations

from typing import Any

from eor_quotes.models.enhancement import Enhancements
from eor_quotes.models.enums import Frequency, QuoteType


def positive(value: Any) -> float:
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    return 0.0


def monthly_enhancement_items(
    enh: Enhancements,
    quote_type: QuoteType,
    months: int = 12,
) -> list[tuple[str, float]]:
    """
    Label and monthly amount of every enhancement that adds to the total.

    Termination costs are spread over the contract. Severance and probation
    provisions are reported but never summed. Items the provider already
    covers, and non-mandatory allowances on statutory-only quotes, add nothing.
    """
    items: list[tuple[str, float]] = []

    def add(label: str, amount: float) -> None:
        if amount > 0:
            items.append((label, amount))

    if enh.termination_costs is not None:
        spread = enh.termination_costs.based_on_contract_months or months
        spread = spread if spread > 0 else 12
        add("Termination Provision", positive(enh.termination_costs.total_termination_cost) / spread)

    for label, salary in (("13th Salary", enh.thirteenth_salary), ("14th Salary", enh.fourteenth_salary)):
        if salary is not None and not salary.is_already_included:
            add(label, positive(salary.monthly_amount) or positive(salary.yearly_amount) / 12)

    bonus = enh.vacation_bonus
    if bonus is not None and not bonus.is_already_included:
        amount = positive(bonus.amount)
        add("Vacation Bonus", amount / 12 if bonus.frequency == Frequency.YEARLY else amount)

    for label, allowance in (
        ("Transportation Allowance", enh.transportation_allowance),
        ("Remote Work Allowance", enh.remote_work_allowance),
        ("Meal Vouchers", enh.meal_vouchers),
    ):
        if allowance is None or allowance.is_already_included:
            continue
        if quote_type == QuoteType.ALL_INCLUSIVE or allowance.is_mandatory:
            add(label, positive(allowance.monthly_amount))

    for key, value in (enh.additional_contributions or {}).items():
        add(key.replace("_", " ").title(), positive(value))

    return items
