"""
Status Deriver

Plan status is computed from installment state, never stored as independent
truth: cancelled only by explicit action, completed when every non-cancelled
installment is paid, active otherwise.

Also classifies due dates by urgency (expired / critical / expiring_soon /
active). Student-facing views classify on student_due_date, remittance views on
college_due_date; the two are never mixed.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence
import logging

from core.exceptions import InvalidTransitionError, InvariantViolationError

logger = logging.getLogger(__name__)

PENDING = 'pending'
PAID = 'paid'
OVERDUE = 'overdue'
CANCELLED = 'cancelled'

ALLOWED_TRANSITIONS = {
    PENDING: {PAID, OVERDUE, CANCELLED},
    OVERDUE: {PAID, CANCELLED},
    PAID: set(),
    CANCELLED: set(),
}

STUDENT_VIEW = 'student'
REMITTANCE_VIEW = 'remittance'


def check_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Installment cannot move from {current} to {target}",
            context={'from': current, 'to': target}
        )


def derive_plan_status(installment_statuses: Sequence[str], explicitly_cancelled: bool = False) -> str:
    """
    Compute a plan's aggregate status from its installments' statuses.

    Raises:
        InvariantViolationError: a plan that was not cancelled has no live installments
    """
    if explicitly_cancelled:
        return 'cancelled'

    live = [status for status in installment_statuses if status != CANCELLED]
    if not live:
        raise InvariantViolationError(
            "Plan is not cancelled but has no non-cancelled installments",
            context={'statuses': list(installment_statuses)}
        )

    if all(status == PAID for status in live):
        return 'completed'
    return 'active'


def next_due_date(installments: Iterable) -> Optional[date]:
    """Earliest student_due_date among pending installments"""
    pending = [item.student_due_date for item in installments if item.status == PENDING]
    return min(pending) if pending else None


@dataclass(frozen=True)
class Urgency:
    level: str
    days_remaining: int
    threshold: Optional[int] = None

    def to_dict(self):
        return {
            'level': self.level,
            'days_remaining': self.days_remaining,
            'threshold': self.threshold,
        }


def classify_due_date(due_date: date, today: date, critical_days: int = 7,
                      thresholds: Sequence[int] = (30, 60, 90)) -> Urgency:
    """
    expired if due_date < today; critical within ``critical_days``;
    expiring_soon within the smallest threshold that covers it; active otherwise.
    """
    days = (due_date - today).days
    if days < 0:
        return Urgency('expired', days)
    if days <= critical_days:
        return Urgency('critical', days)
    for threshold in sorted(thresholds):
        if days <= threshold:
            return Urgency('expiring_soon', days, threshold)
    return Urgency('active', days)


def classify_installment(installment, today: date, view: str = STUDENT_VIEW,
                         critical_days: int = 7, thresholds: Sequence[int] = (30, 60, 90)) -> Optional[Urgency]:
    """Classify one installment on the requested timeline; None when that date is not set."""
    if view == STUDENT_VIEW:
        due = installment.student_due_date
    elif view == REMITTANCE_VIEW:
        due = installment.college_due_date
    else:
        raise ValueError(f"Unknown view: {view}")

    if due is None:
        return None
    return classify_due_date(due, today, critical_days, thresholds)


class StatusDeriver:
    """Binds classification thresholds from an EngineConfig"""

    def __init__(self, config):
        self.config = config

    def plan_status(self, plan, installments) -> str:
        return derive_plan_status([item.status for item in installments], plan.status == 'cancelled')

    def next_due_date(self, installments) -> Optional[date]:
        return next_due_date(installments)

    def classify(self, installment, today: date, view: str = STUDENT_VIEW) -> Optional[Urgency]:
        return classify_installment(
            installment, today, view,
            critical_days=self.config.critical_days,
            thresholds=self.config.due_soon_thresholds,
        )
