"""
Commission Calculator

Commission owed to the agency on a plan:

    commissionable_base = total - materials - admin - other   (never below 0)
    gst_inclusive:  expected = base / (1 + gst_rate) * rate
    otherwise:      expected = base * rate

Commission is earned proportionally as commission-generating installments are
paid. All results are rounded half-up to two decimal places.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
import logging

from core.exceptions import InvalidRateError
from core.money import ZERO, round_money, safe_divide, to_decimal

logger = logging.getLogger(__name__)

ONE = Decimal('1')


def normalize_rate(rate) -> Decimal:
    """
    Accept a rate as a fraction (0.15) or a percentage (15) and return the fraction.
    Values above 1 and up to 100 are treated as percentages.
    """
    rate = to_decimal(rate)
    if ONE < rate <= Decimal('100'):
        return rate / Decimal('100')
    return rate


@dataclass
class CommissionResult:
    commissionable_base: Decimal
    exclusive_base: Decimal
    expected_commission: Decimal
    commission_rate: Decimal
    gst_inclusive: bool
    gst_rate: Decimal

    def to_dict(self):
        return {
            'commissionable_base': str(self.commissionable_base),
            'exclusive_base': str(self.exclusive_base),
            'expected_commission': str(self.expected_commission),
            'commission_rate': str(self.commission_rate),
            'gst_inclusive': self.gst_inclusive,
            'gst_rate': str(self.gst_rate),
        }


class CommissionCalculator:
    """Commission arithmetic for a single flat GST rate"""

    def __init__(self, gst_rate=Decimal('0.10')):
        self.gst_rate = to_decimal(gst_rate)
        if self.gst_rate < 0:
            raise InvalidRateError(f"gst_rate cannot be negative, got: {self.gst_rate}")

    @staticmethod
    def validate_rate(rate) -> Decimal:
        rate = to_decimal(rate)
        if rate < 0 or rate > 1:
            raise InvalidRateError(
                f"commission_rate must be between 0 and 1, got: {rate}",
                context={'commission_rate': str(rate)}
            )
        return rate

    def commissionable_base(self, total_amount, materials_cost=0, admin_fees=0, other_fees=0) -> Decimal:
        base = (
            to_decimal(total_amount)
            - to_decimal(materials_cost)
            - to_decimal(admin_fees)
            - to_decimal(other_fees)
        )
        if base < 0:
            logger.warning(
                f"Non-commissionable fees exceed plan total ({total_amount}); "
                f"clamping commissionable base {base} to 0"
            )
            return ZERO
        return round_money(base)

    def exclusive_base(self, commissionable_base, gst_inclusive: bool) -> Decimal:
        """Unrounded GST-exclusive portion of the base"""
        base = to_decimal(commissionable_base)
        if gst_inclusive:
            return base / (ONE + self.gst_rate)
        return base

    def calculate(self, total_amount, commission_rate, gst_inclusive=True,
                  materials_cost=0, admin_fees=0, other_fees=0) -> CommissionResult:
        rate = self.validate_rate(commission_rate)
        base = self.commissionable_base(total_amount, materials_cost, admin_fees, other_fees)
        exclusive = self.exclusive_base(base, gst_inclusive)

        return CommissionResult(
            commissionable_base=base,
            exclusive_base=round_money(exclusive),
            expected_commission=round_money(exclusive * rate),
            commission_rate=rate,
            gst_inclusive=gst_inclusive,
            gst_rate=self.gst_rate,
        )

    @staticmethod
    def earned_commission(expected_commission, installments: Iterable) -> Decimal:
        """
        expected * (paid commission-generating amount / all commission-generating amount)

        Args:
            expected_commission: Plan's expected commission
            installments: objects with ``amount``, ``status`` and ``generates_commission``
        """
        paid_total = ZERO
        commission_total = ZERO
        for installment in installments:
            if not installment.generates_commission:
                continue
            amount = to_decimal(installment.amount)
            commission_total += amount
            if installment.status == 'paid':
                paid_total += amount

        if commission_total == 0:
            return ZERO
        return round_money(to_decimal(expected_commission) * paid_total / commission_total)

    @staticmethod
    def installment_share(expected_commission, amount, commission_total) -> Decimal:
        """Unrounded commission attributable to one installment of a plan"""
        return safe_divide(to_decimal(expected_commission) * to_decimal(amount), commission_total)

    def gst_component(self, commission, gst_inclusive: bool, gst_rate=None) -> Decimal:
        """GST on a commission amount (unrounded)."""
        rate = self.gst_rate if gst_rate is None else to_decimal(gst_rate)
        commission = to_decimal(commission)
        if gst_inclusive:
            return commission / (ONE + rate) * rate
        return commission * rate
