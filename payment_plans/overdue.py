"""
Overdue Detector

Moves pending installments past their student due date to overdue. Each
agency is swept under a cache lock so two sweeps never run for the same tenant
at once, and every row transition is a conditional update on status=pending in
its own transaction, so re-running or resuming an interrupted sweep is safe.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List
from zoneinfo import ZoneInfo
import logging

from django.core.cache import cache
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from agencies.config import EngineConfig
from agencies.models import Agency
from .models import Installment, PaymentPlan
from .services import log_activity

logger = logging.getLogger(__name__)

LOCK_KEY = 'payment_ledger:overdue_sweep:{agency_id}'


@dataclass
class OverdueSweepResult:
    transitioned: int = 0
    per_agency: Dict[int, int] = field(default_factory=dict)
    skipped_agencies: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            'transitioned': self.transitioned,
            'per_agency': {str(key): value for key, value in self.per_agency.items()},
            'skipped_agencies': self.skipped_agencies,
        }


class OverdueDetector:
    """
    Sweeps one agency at a time.

    Usage:
        detector = OverdueDetector(agency)
        count = detector.sweep(timezone.now())
    """

    def __init__(self, agency, config: EngineConfig = None):
        self.agency = agency
        self.config = config or EngineConfig.from_agency(agency)

    def local_cutoff(self, as_of):
        """
        Return (local_date, include_today) for the agency.

        A plain date is taken as the agency's local date with no cut-off applied.
        A datetime is converted to the agency timezone; installments due on the
        local date are included once the configured cut-off time has passed.
        """
        if not isinstance(as_of, datetime):
            return as_of, False

        if timezone.is_naive(as_of):
            as_of = timezone.make_aware(as_of, ZoneInfo('UTC'))
        local = as_of.astimezone(ZoneInfo(self.config.timezone))
        cutoff = self.config.overdue_cutoff_time
        include_today = cutoff is not None and local.time() >= cutoff
        return local.date(), include_today

    def candidates(self, as_of):
        local_date, include_today = self.local_cutoff(as_of)
        due = Q(student_due_date__lt=local_date)
        if include_today:
            due |= Q(student_due_date=local_date)

        return (
            Installment.objects.for_agency(self.agency)
            .filter(status=Installment.STATUS_PENDING, payment_plan__status=PaymentPlan.STATUS_ACTIVE)
            .filter(due)
            .order_by('student_due_date', 'payment_plan_id', 'installment_number')
        )

    def sweep(self, as_of) -> int:
        transitioned = 0
        for installment in self.candidates(as_of):
            if self.mark_overdue(installment, as_of):
                transitioned += 1
        return transitioned

    def mark_overdue(self, installment, as_of) -> bool:
        """Conditional pending -> overdue; False when another writer got there first"""
        with transaction.atomic():
            updated = Installment.objects.filter(
                pk=installment.pk,
                status=Installment.STATUS_PENDING,
            ).update(status=Installment.STATUS_OVERDUE, updated_at=timezone.now())
            if not updated:
                logger.debug(f"Installment {installment.pk} no longer pending, skipped")
                return False

            log_activity(
                self.agency.pk, installment, 'marked_overdue',
                old_status=Installment.STATUS_PENDING, new_status=Installment.STATUS_OVERDUE,
                description=(
                    f"Installment {installment.installment_number} overdue "
                    f"(due {installment.student_due_date})"
                ),
                metadata={
                    'payment_plan_id': installment.payment_plan_id,
                    'student_due_date': installment.student_due_date,
                    'amount': installment.amount,
                    'as_of': as_of,
                },
            )
        return True


def run_overdue_sweep(as_of=None, agency=None) -> OverdueSweepResult:
    """
    Sweep every active agency (or just ``agency``) as of ``as_of``.

    Args:
        as_of: aware datetime (default now) or a date taken as each agency's local date
        agency: Agency instance or primary key; None sweeps all active agencies

    Returns:
        OverdueSweepResult with the number of installments transitioned
    """
    as_of = as_of or timezone.now()
    if isinstance(as_of, str):
        as_of = date.fromisoformat(as_of)

    if agency is None:
        agencies = Agency.objects.filter(is_active=True).order_by('pk')
    elif isinstance(agency, Agency):
        agencies = [agency]
    else:
        agencies = Agency.objects.filter(pk=agency)

    result = OverdueSweepResult()
    for current in agencies:
        detector = OverdueDetector(current)
        lock_key = LOCK_KEY.format(agency_id=current.pk)

        if not cache.add(lock_key, str(as_of), detector.config.sweep_lock_timeout):
            logger.warning(f"Overdue sweep already running for agency {current.pk}, skipping")
            result.skipped_agencies.append(current.pk)
            continue

        try:
            count = detector.sweep(as_of)
        finally:
            cache.delete(lock_key)

        result.per_agency[current.pk] = count
        result.transitioned += count
        if count:
            logger.info(f"Marked {count} installments overdue for agency {current.pk}")

    logger.info(
        f"Overdue sweep as of {as_of}: {result.transitioned} transitioned, "
        f"{len(result.skipped_agencies)} agencies skipped"
    )
    return result
