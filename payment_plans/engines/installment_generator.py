"""
Installment Generator

Expands a plan's configuration into an ordered list of pending installments,
plus installment 0 for the initial payment when one is configured.
Amounts are split in whole cents so the schedule sums exactly to the regular
pool, and due dates are laid out on the plan's anchor timeline (college
timeline when a first college due date is configured, student timeline
otherwise).
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
import logging

from core.exceptions import (
    InvalidScheduleLengthError,
    MissingTimelineAnchorError,
    NonPositiveAmountError,
)
from core.money import ZERO, round_money, split_evenly, to_decimal
from core.utils import add_months, parse_date

logger = logging.getLogger(__name__)

FREQUENCY_MONTHS = {
    'monthly': 1,
    'quarterly': 3,
}


@dataclass
class ScheduleConfig:
    """Validated inputs the generator needs from a plan configuration"""
    total_amount: Decimal
    number_of_installments: int
    payment_frequency: str = 'monthly'
    start_date: Optional[date] = None
    first_college_due_date: Optional[date] = None
    student_lead_time_days: Optional[int] = None
    initial_payment_amount: Optional[Decimal] = None
    initial_payment_due_date: Optional[date] = None
    initial_payment_paid: bool = False
    custom_due_dates: List[date] = field(default_factory=list)
    pass_through_lines: List[bool] = field(default_factory=list)

    @property
    def has_college_timeline(self):
        return self.first_college_due_date is not None

    @property
    def regular_pool(self):
        return round_money(to_decimal(self.total_amount) - to_decimal(self.initial_payment_amount))


@dataclass
class GeneratedInstallment:
    installment_number: int
    amount: Decimal
    student_due_date: date
    college_due_date: Optional[date]
    generates_commission: bool = True
    status: str = 'pending'

    def to_dict(self):
        return {
            'installment_number': self.installment_number,
            'amount': str(self.amount),
            'student_due_date': self.student_due_date.isoformat(),
            'college_due_date': self.college_due_date.isoformat() if self.college_due_date else None,
            'generates_commission': self.generates_commission,
            'status': self.status,
        }


@dataclass
class InstallmentSchedule:
    installments: List[GeneratedInstallment]
    total_amount: Decimal
    initial_payment_amount: Decimal
    regular_pool: Decimal
    initial_installment: Optional[GeneratedInstallment] = None

    @property
    def installments_total(self):
        return sum((item.amount for item in self.installments), ZERO)

    @property
    def all_installments(self):
        """Initial payment (installment 0) first, then the regular installments"""
        if self.initial_installment is None:
            return list(self.installments)
        return [self.initial_installment] + list(self.installments)

    def summary(self):
        return {
            'total_amount': str(self.total_amount),
            'initial_payment': str(self.initial_payment_amount),
            'regular_pool': str(self.regular_pool),
            'total_installments': len(self.installments),
            'amount_per_installment': str(self.installments[0].amount) if self.installments else '0.00',
        }


class InstallmentGenerator:
    """
    Generates installment schedules.

    Usage:
        schedule = InstallmentGenerator().generate(ScheduleConfig(
            total_amount=Decimal('1200.00'),
            number_of_installments=4,
            payment_frequency='monthly',
            first_college_due_date=date(2025, 1, 15),
        ))
    """

    def generate(self, config: ScheduleConfig) -> InstallmentSchedule:
        count = config.number_of_installments
        if not count or count <= 0:
            raise NonPositiveAmountError(
                f"number_of_installments must be positive, got: {count}",
                context={'number_of_installments': count}
            )

        amounts = self._split_amounts(config)
        anchor_dates = self._anchor_dates(config)
        lead_time = timedelta(days=config.student_lead_time_days or 0)

        installments = []
        for index, (amount, anchor) in enumerate(zip(amounts, anchor_dates)):
            if config.has_college_timeline:
                college_due = anchor
                student_due = anchor - lead_time
            else:
                college_due = None
                student_due = anchor

            pass_through = index < len(config.pass_through_lines) and config.pass_through_lines[index]
            installments.append(GeneratedInstallment(
                installment_number=index + 1,
                amount=amount,
                student_due_date=student_due,
                college_due_date=college_due,
                generates_commission=not pass_through,
            ))

        logger.debug(
            f"Generated {len(installments)} installments ({config.payment_frequency}) "
            f"for pool {config.regular_pool}"
        )

        return InstallmentSchedule(
            installments=installments,
            total_amount=round_money(config.total_amount),
            initial_payment_amount=round_money(config.initial_payment_amount or ZERO),
            regular_pool=config.regular_pool,
            initial_installment=self._initial_installment(config, installments),
        )

    def _initial_installment(self, config, installments) -> Optional[GeneratedInstallment]:
        amount = round_money(config.initial_payment_amount or ZERO)
        if amount <= 0:
            return None

        due = config.initial_payment_due_date or config.start_date or installments[0].student_due_date
        return GeneratedInstallment(
            installment_number=0,
            amount=amount,
            student_due_date=due,
            college_due_date=None,
            status='paid' if config.initial_payment_paid else 'pending',
        )

    def _split_amounts(self, config: ScheduleConfig) -> List[Decimal]:
        initial = to_decimal(config.initial_payment_amount)
        if initial < 0:
            raise NonPositiveAmountError(
                f"initial_payment_amount cannot be negative, got: {initial}",
                context={'initial_payment_amount': str(initial)}
            )

        pool = config.regular_pool
        if pool <= 0:
            raise NonPositiveAmountError(
                f"Nothing left to schedule: total {config.total_amount} minus initial payment {initial} is {pool}",
                context={'regular_pool': str(pool)}
            )

        amounts = split_evenly(pool, config.number_of_installments)
        if any(amount <= 0 for amount in amounts):
            raise NonPositiveAmountError(
                f"Pool {pool} is too small for {config.number_of_installments} installments",
                context={'regular_pool': str(pool), 'number_of_installments': config.number_of_installments}
            )
        return amounts

    def _anchor_dates(self, config: ScheduleConfig) -> List[date]:
        frequency = config.payment_frequency

        if frequency == 'custom':
            dates = sorted(parse_date(value) for value in config.custom_due_dates)
            if len(dates) != config.number_of_installments:
                raise InvalidScheduleLengthError(
                    f"Custom schedule needs exactly {config.number_of_installments} dates, got {len(dates)}",
                    context={'expected': config.number_of_installments, 'received': len(dates)}
                )
            return dates

        if frequency not in FREQUENCY_MONTHS:
            raise InvalidScheduleLengthError(
                f"Unknown payment frequency: {frequency}",
                error_code='invalid_frequency',
                context={'payment_frequency': frequency}
            )

        anchor = config.first_college_due_date or config.start_date
        if anchor is None:
            raise MissingTimelineAnchorError(
                f"A start date or first college due date is required for {frequency} schedules",
                context={'payment_frequency': frequency}
            )

        step = FREQUENCY_MONTHS[frequency]
        return [add_months(anchor, step * k) for k in range(config.number_of_installments)]
