"""
Payment Plan Ledger Services

Engine facade consumed by views, tasks and management commands:
plan creation (generation + commission + atomic persistence), marking
installments paid with optimistic concurrency, and plan cancellation.
The initial payment is stored as installment 0, so status derivation, earned
commission, the overdue sweep and the reports all see it.
Every call is scoped to the agency the service was constructed with.
"""
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Tuple
import logging

from django.db import transaction
from django.utils import timezone

from agencies.config import EngineConfig
from core.exceptions import (
    InvariantViolationError,
    NonPositiveAmountError,
    NotFoundError,
    PlanStateError,
    StaleStatusError,
    TenantScopeError,
    ValidationFailedError,
)
from core.money import round_money, to_decimal, within_tolerance
from core.utils import parse_date
from .engines.commission_calculator import CommissionCalculator
from .engines.installment_generator import InstallmentGenerator, ScheduleConfig
from .engines.status_deriver import StatusDeriver, check_transition
from .forms import PaymentPlanConfigForm
from .models import ActivityLog, Installment, PaymentPlan

logger = logging.getLogger(__name__)


def log_activity(agency_id, entity, action, old_status='', new_status='', description='', metadata=None, user=None):
    """Append one audit entry. Callers run this inside the transaction of the change it records."""
    return ActivityLog.objects.create(
        agency_id=agency_id,
        entity_type=entity.__class__.__name__.lower(),
        entity_id=entity.pk,
        action=action,
        old_status=old_status or '',
        new_status=new_status or '',
        description=description,
        metadata=metadata or {},
        user=user if user is not None and user.is_authenticated else None,
    )


class PaymentPlanService:
    """
    Write-side operations on payment plans for one agency.

    Usage:
        service = PaymentPlanService(agency, user=request.user)
        plan, installments = service.create_plan(config)
        service.mark_installment_paid(installments[0].id, date.today())
    """

    def __init__(self, agency, user=None, config: EngineConfig = None):
        if agency is None:
            raise TenantScopeError("PaymentPlanService requires an agency")
        self.agency = agency
        self.user = user
        self.config = config or EngineConfig.from_agency(agency)
        self.generator = InstallmentGenerator()
        self.status_deriver = StatusDeriver(self.config)

    # ------------------------------------------------------------------
    # Plan creation
    # ------------------------------------------------------------------

    def validate_config(self, config) -> dict:
        form = PaymentPlanConfigForm(data=config, agency=self.agency)
        if not form.is_valid():
            raise ValidationFailedError(
                "Invalid payment plan configuration",
                context={'errors': form.errors.get_json_data()}
            )
        return form.cleaned_data

    def preview_plan(self, config) -> dict:
        """Validate, generate and compute commission without saving anything"""
        cleaned = self.validate_config(config)
        commission, schedule = self._build(cleaned)
        return {
            'installments': [item.to_dict() for item in schedule.all_installments],
            'summary': {**schedule.summary(), **commission.to_dict()},
        }

    def create_plan(self, config) -> Tuple[PaymentPlan, List[Installment]]:
        """
        Validate a plan configuration, generate its installments, compute the
        expected commission and persist plan + installments atomically.

        Raises:
            ValidationFailedError (or a subclass) before any write
            InvariantViolationError if the generated schedule does not sum to the total
        """
        cleaned = self.validate_config(config)
        commission, schedule = self._build(cleaned)
        created_on = self.config.local_today()

        with transaction.atomic():
            plan = PaymentPlan.objects.create(
                agency=self.agency,
                student=cleaned['student'],
                enrollment=cleaned.get('enrollment'),
                reference_number=cleaned.get('reference_number') or '',
                total_amount=round_money(cleaned['total_amount']),
                materials_cost=cleaned['materials_cost'],
                admin_fees=cleaned['admin_fees'],
                other_fees=cleaned['other_fees'],
                gst_inclusive=cleaned['gst_inclusive'],
                gst_rate=commission.gst_rate,
                commission_rate=commission.commission_rate,
                start_date=cleaned.get('start_date'),
                first_college_due_date=cleaned.get('first_college_due_date'),
                student_lead_time_days=cleaned.get('student_lead_time_days'),
                number_of_installments=cleaned['number_of_installments'],
                payment_frequency=cleaned['payment_frequency'],
                initial_payment_amount=cleaned.get('initial_payment_amount'),
                initial_payment_due_date=cleaned.get('initial_payment_due_date'),
                initial_payment_paid=cleaned['initial_payment_paid'],
                commissionable_base=commission.commissionable_base,
                expected_commission=commission.expected_commission,
                notes=cleaned.get('notes') or '',
                created_by=self._user_or_none(),
            )

            installments = Installment.objects.bulk_create([
                Installment(
                    agency=self.agency,
                    payment_plan=plan,
                    installment_number=item.installment_number,
                    amount=item.amount,
                    generates_commission=item.generates_commission,
                    student_due_date=item.student_due_date,
                    college_due_date=item.college_due_date,
                    status=item.status,
                    paid_date=created_on if item.status == Installment.STATUS_PAID else None,
                    paid_amount=item.amount if item.status == Installment.STATUS_PAID else None,
                )
                for item in schedule.all_installments
            ])

            log_activity(
                self.agency.pk, plan, 'plan_created', new_status=plan.status,
                description=f"Payment plan created with {len(installments)} installments",
                metadata={
                    'total_amount': plan.total_amount,
                    'expected_commission': plan.expected_commission,
                    'number_of_installments': plan.number_of_installments,
                    'initial_payment_amount': plan.initial_payment_amount,
                },
                user=self.user,
            )

        logger.info(
            f"Created payment plan {plan.pk} for agency {self.agency.pk}: "
            f"{len(installments)} installments, expected commission {plan.expected_commission}"
        )
        # bulk_create does not set primary keys on every backend
        return plan, list(plan.installments.order_by('installment_number'))

    def _build(self, cleaned):
        gst_rate = cleaned.get('gst_rate')
        calculator = CommissionCalculator(gst_rate=self.config.gst_rate if gst_rate is None else gst_rate)
        commission = calculator.calculate(
            total_amount=cleaned['total_amount'],
            commission_rate=cleaned['commission_rate'],
            gst_inclusive=cleaned['gst_inclusive'],
            materials_cost=cleaned['materials_cost'],
            admin_fees=cleaned['admin_fees'],
            other_fees=cleaned['other_fees'],
        )

        schedule = self.generator.generate(ScheduleConfig(
            total_amount=to_decimal(cleaned['total_amount']),
            number_of_installments=cleaned['number_of_installments'],
            payment_frequency=cleaned['payment_frequency'],
            start_date=cleaned.get('start_date'),
            first_college_due_date=cleaned.get('first_college_due_date'),
            student_lead_time_days=cleaned.get('student_lead_time_days'),
            initial_payment_amount=cleaned.get('initial_payment_amount'),
            initial_payment_due_date=cleaned.get('initial_payment_due_date'),
            initial_payment_paid=cleaned['initial_payment_paid'],
            custom_due_dates=cleaned.get('custom_due_dates') or [],
            pass_through_lines=[
                number in (cleaned.get('pass_through_installments') or [])
                for number in range(1, cleaned['number_of_installments'] + 1)
            ],
        ))

        self.verify_schedule_total(schedule.installments_total, schedule.initial_payment_amount, schedule.total_amount)
        return commission, schedule

    @staticmethod
    def verify_schedule_total(installments_total, initial_amount, total_amount, plan_id=None):
        if not within_tolerance(to_decimal(installments_total) + to_decimal(initial_amount), total_amount):
            logger.error(
                f"Installment sum invariant broken for plan {plan_id}: "
                f"{installments_total} + {initial_amount} != {total_amount}"
            )
            raise InvariantViolationError(
                "Installments plus initial payment do not add up to the plan total",
                context={
                    'plan_id': plan_id,
                    'installments_total': str(installments_total),
                    'initial_payment_amount': str(initial_amount),
                    'total_amount': str(total_amount),
                }
            )

    # ------------------------------------------------------------------
    # Installment payment
    # ------------------------------------------------------------------

    def mark_installment_paid(self, installment_id, paid_date, paid_amount=None) -> Installment:
        """
        Transition a pending/overdue installment to paid.

        The write is a conditional update on the status that was read; if another
        writer changed the row in between, nothing is written and StaleStatusError
        is raised so the caller can re-read and retry.
        """
        try:
            paid_date = parse_date(paid_date) if paid_date else self.config.local_today()
        except (TypeError, ValueError):
            raise ValidationFailedError(
                f"paid_date must be a date (YYYY-MM-DD), got: {paid_date}",
                context={'paid_date': str(paid_date)}
            )
        installment = self._load_installment(installment_id)

        observed_status = installment.status
        if observed_status not in Installment.OPEN_STATUSES:
            raise StaleStatusError(
                f"Installment {installment.pk} is {observed_status}, expected pending or overdue",
                context={'installment_id': installment.pk, 'status': observed_status}
            )
        check_transition(observed_status, Installment.STATUS_PAID)

        try:
            amount = round_money(paid_amount) if paid_amount not in (None, '') else installment.amount
        except InvalidOperation:
            raise ValidationFailedError(
                f"paid_amount must be a number, got: {paid_amount}",
                context={'installment_id': installment.pk}
            )
        if amount <= 0:
            raise NonPositiveAmountError(
                f"paid_amount must be positive, got: {amount}",
                context={'installment_id': installment.pk}
            )

        with transaction.atomic():
            updated = Installment.objects.for_agency(self.agency).filter(
                pk=installment.pk,
                status=observed_status,
            ).update(
                status=Installment.STATUS_PAID,
                paid_date=paid_date,
                paid_amount=amount,
                updated_at=timezone.now(),
            )
            if updated != 1:
                logger.info(f"Stale status on installment {installment.pk}: expected {observed_status}")
                raise StaleStatusError(
                    f"Installment {installment.pk} changed while recording payment",
                    context={'installment_id': installment.pk, 'expected_status': observed_status}
                )

            log_activity(
                self.agency.pk, installment, 'marked_paid',
                old_status=observed_status, new_status=Installment.STATUS_PAID,
                description=f"Installment {installment.installment_number} marked paid ({amount})",
                metadata={
                    'payment_plan_id': installment.payment_plan_id,
                    'amount': installment.amount,
                    'paid_amount': amount,
                    'paid_date': paid_date,
                },
                user=self.user,
            )
            if installment.installment_number == 0:
                self._sync_initial_payment(installment, amount, paid_date)
            self.refresh_plan_status(installment.payment_plan_id)

        installment.refresh_from_db()
        logger.info(f"Installment {installment.pk} marked paid on {paid_date}")
        return installment

    def _load_installment(self, installment_id) -> Installment:
        try:
            return Installment.objects.for_agency(self.agency).get(pk=installment_id)
        except Installment.DoesNotExist:
            raise NotFoundError(
                f"Installment {installment_id} not found",
                context={'installment_id': installment_id}
            )

    # ------------------------------------------------------------------
    # Plan state
    # ------------------------------------------------------------------

    def get_plan(self, plan_id, for_update=False) -> PaymentPlan:
        queryset = PaymentPlan.objects.for_agency(self.agency)
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=plan_id)
        except PaymentPlan.DoesNotExist:
            raise NotFoundError(f"Payment plan {plan_id} not found", context={'plan_id': plan_id})

    def refresh_plan_status(self, plan_id) -> PaymentPlan:
        """Recompute and store the derived plan status from its installments"""
        plan = self.get_plan(plan_id)
        installments = list(plan.installments.all())
        status = self.status_deriver.plan_status(plan, installments)
        if status != plan.status:
            logger.info(f"Plan {plan.pk} status {plan.status} -> {status}")
            PaymentPlan.objects.for_agency(self.agency).filter(pk=plan.pk).update(
                status=status, updated_at=timezone.now()
            )
            plan.status = status
        return plan

    def cancel_plan(self, plan_id) -> PaymentPlan:
        """
        Explicitly cancel a plan, cascading pending/overdue installments to cancelled.
        Cancelling an already cancelled plan is a no-op; completed plans cannot be cancelled.
        """
        with transaction.atomic():
            plan = self.get_plan(plan_id, for_update=True)
            if plan.status == PaymentPlan.STATUS_CANCELLED:
                return plan
            if plan.status == PaymentPlan.STATUS_COMPLETED:
                raise PlanStateError(
                    f"Payment plan {plan.pk} is completed and cannot be cancelled",
                    context={'plan_id': plan.pk}
                )

            open_installments = list(
                plan.installments.filter(status__in=Installment.OPEN_STATUSES).order_by('installment_number')
            )
            for installment in open_installments:
                updated = Installment.objects.filter(pk=installment.pk, status=installment.status).update(
                    status=Installment.STATUS_CANCELLED, updated_at=timezone.now()
                )
                if updated != 1:
                    raise StaleStatusError(
                        f"Installment {installment.pk} changed while cancelling plan {plan.pk}",
                        context={'installment_id': installment.pk, 'plan_id': plan.pk}
                    )
                log_activity(
                    self.agency.pk, installment, 'cancelled',
                    old_status=installment.status, new_status=Installment.STATUS_CANCELLED,
                    description=f"Installment {installment.installment_number} cancelled with plan {plan.pk}",
                    metadata={'payment_plan_id': plan.pk, 'amount': installment.amount},
                    user=self.user,
                )

            old_status = plan.status
            plan.status = PaymentPlan.STATUS_CANCELLED
            plan.cancelled_at = timezone.now()
            plan.updated_by = self._user_or_none()
            plan.save(update_fields=['status', 'cancelled_at', 'updated_by', 'updated_at'])

            log_activity(
                self.agency.pk, plan, 'plan_cancelled',
                old_status=old_status, new_status=plan.status,
                description=f"Payment plan cancelled; {len(open_installments)} installments cancelled",
                metadata={'cancelled_installments': [item.pk for item in open_installments]},
                user=self.user,
            )

        logger.info(f"Cancelled payment plan {plan.pk} ({len(open_installments)} installments)")
        return plan

    def record_initial_payment(self, plan_id, paid=True, paid_date=None) -> PaymentPlan:
        """
        Record the plan's initial payment (installment 0) as received.

        Recording an already received payment is a no-op. ``paid=False`` only
        succeeds while the payment is still open; a received payment cannot be
        reverted.
        """
        plan = self.get_plan(plan_id)
        if plan.is_cancelled:
            raise PlanStateError(
                f"Payment plan {plan.pk} is cancelled",
                context={'plan_id': plan.pk}
            )
        try:
            initial = plan.installments.get(installment_number=0)
        except Installment.DoesNotExist:
            raise PlanStateError(
                f"Payment plan {plan.pk} has no initial payment",
                context={'plan_id': plan.pk}
            )

        if not paid:
            if initial.status == Installment.STATUS_PAID:
                check_transition(initial.status, Installment.STATUS_PENDING)
            return plan
        if initial.status == Installment.STATUS_PAID:
            return plan

        self.mark_installment_paid(initial.pk, paid_date)
        return self.get_plan(plan_id)

    def _sync_initial_payment(self, installment, amount, paid_date):
        PaymentPlan.objects.for_agency(self.agency).filter(pk=installment.payment_plan_id).update(
            initial_payment_paid=True, updated_by=self._user_or_none(), updated_at=timezone.now()
        )
        log_activity(
            self.agency.pk, installment.payment_plan, 'initial_payment_recorded',
            description=f"Initial payment received ({amount})",
            metadata={'initial_payment_amount': installment.amount, 'paid_amount': amount, 'paid_date': paid_date},
            user=self.user,
        )

    def plan_summary(self, plan_id, today: date = None) -> dict:
        """Derived view of a plan: status, next due date, commission earned so far, urgency per installment"""
        today = today or self.config.local_today()
        plan = self.get_plan(plan_id)
        installments = list(plan.installments.order_by('installment_number'))

        self.verify_schedule_total(
            sum((item.amount for item in installments if item.installment_number > 0), Decimal('0.00')),
            plan.initial_amount, plan.total_amount, plan_id=plan.pk,
        )

        next_due = self.status_deriver.next_due_date(installments)
        earned = CommissionCalculator.earned_commission(plan.expected_commission, installments)

        return {
            'plan_id': plan.pk,
            'status': self.status_deriver.plan_status(plan, installments),
            'next_due_date': next_due,
            'total_amount': plan.total_amount,
            'initial_payment_paid': plan.initial_payment_paid,
            'commissionable_base': plan.commissionable_base,
            'expected_commission': plan.expected_commission,
            'earned_commission': earned,
            'outstanding_commission': round_money(plan.expected_commission - earned),
            'installments': [
                {
                    'id': item.pk,
                    'installment_number': item.installment_number,
                    'amount': item.amount,
                    'status': item.status,
                    'student_due_date': item.student_due_date,
                    'college_due_date': item.college_due_date,
                    'student_urgency': self._urgency(item, today, 'student'),
                    'remittance_urgency': self._urgency(item, today, 'remittance'),
                }
                for item in installments
            ],
        }

    def _urgency(self, installment, today, view):
        if not installment.is_open:
            return None
        urgency = self.status_deriver.classify(installment, today, view)
        return urgency.to_dict() if urgency else None

    def _user_or_none(self):
        if self.user is not None and self.user.is_authenticated:
            return self.user
        return None
