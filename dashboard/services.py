"""
Dashboard Report Services

Read-only aggregations over one agency's ledger: cash-flow projection,
commission breakdown by college / branch / country, seasonal commission trend,
payment status summary, the overdue list, headline KPIs and per-student
payment history. Aggregation runs in Python over
agency-scoped querysets so the money arithmetic stays in Decimal.
"""
from collections import OrderedDict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from django.db.models import Sum

from agencies.config import EngineConfig
from agencies.models import Student
from core.exceptions import NotFoundError, TenantScopeError, ValidationFailedError
from core.money import ZERO, percentage_change, round_money, safe_divide
from core.utils import add_months, bucket_bounds, month_end, month_start, period_bounds, trailing_months
from payment_plans.engines.commission_calculator import CommissionCalculator
from payment_plans.models import Installment, PaymentPlan

logger = logging.getLogger(__name__)

BUCKETS = ('day', 'week', 'month')
DIMENSIONS = ('college', 'branch', 'country')
PERIODS = ('all', 'year', 'quarter', 'month')
MAX_WINDOW_DAYS = 365
UNASSIGNED = 'Unassigned'


def trend_direction(current, previous) -> str:
    if current > previous:
        return 'up'
    if current < previous:
        return 'down'
    return 'neutral'


class DashboardReportService:
    """
    Report series for the agency dashboard.

    Usage:
        service = DashboardReportService(agency)
        buckets = service.cash_flow_projection(window_days=30, bucket='week')
    """

    def __init__(self, agency, config: EngineConfig = None):
        if agency is None:
            raise TenantScopeError("DashboardReportService requires an agency")
        self.agency = agency
        self.config = config or EngineConfig.from_agency(agency)
        self.calculator = CommissionCalculator(gst_rate=self.config.gst_rate)

    def _today(self, today):
        return today or self.config.local_today()

    def _installments(self):
        return Installment.objects.for_agency(self.agency)

    def _commission_totals(self) -> Dict[int, Decimal]:
        """Sum of commission-generating installment amounts per plan (the earned-commission denominator)"""
        rows = (
            self._installments()
            .filter(generates_commission=True)
            .values('payment_plan_id')
            .annotate(total=Sum('amount'))
        )
        return {row['payment_plan_id']: row['total'] or ZERO for row in rows}

    def _share(self, installment, commission_totals) -> Decimal:
        if not installment.generates_commission:
            return ZERO
        return CommissionCalculator.installment_share(
            installment.payment_plan.expected_commission,
            installment.amount,
            commission_totals.get(installment.payment_plan_id, ZERO),
        )

    @staticmethod
    def _college(plan):
        if plan.enrollment_id is None:
            return None
        return plan.enrollment.branch.college

    # ------------------------------------------------------------------
    # Cash flow
    # ------------------------------------------------------------------

    def cash_flow_projection(self, window_days: int = 90, bucket: str = 'week',
                             today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Paid vs expected amounts over [today, today + window_days], grouped by bucket start.

        Paid installments are placed by paid_date, pending and overdue ones by
        student_due_date. Buckets without installments are left out.
        """
        if bucket not in BUCKETS:
            raise ValidationFailedError(
                f"bucket must be one of {', '.join(BUCKETS)}, got: {bucket}",
                context={'bucket': bucket}
            )
        try:
            window_days = int(window_days)
        except (TypeError, ValueError):
            raise ValidationFailedError(f"window_days must be an integer, got: {window_days}")
        if window_days < 1 or window_days > MAX_WINDOW_DAYS:
            raise ValidationFailedError(
                f"window_days must be between 1 and {MAX_WINDOW_DAYS}, got: {window_days}",
                context={'window_days': window_days}
            )

        start = self._today(today)
        end = start + timedelta(days=window_days)

        paid = self._installments().filter(
            status=Installment.STATUS_PAID, paid_date__gte=start, paid_date__lte=end
        )
        expected = self._installments().filter(
            status__in=Installment.OPEN_STATUSES, student_due_date__gte=start, student_due_date__lte=end
        )
        related = ('payment_plan__student', 'payment_plan__enrollment__branch__college')

        buckets = {}
        for installment in list(paid.select_related(*related)) + list(expected.select_related(*related)):
            is_paid = installment.status == Installment.STATUS_PAID
            when = installment.paid_date if is_paid else installment.student_due_date
            bucket_start, bucket_end = bucket_bounds(when, bucket)

            row = buckets.setdefault(bucket_start, {
                'date_bucket': bucket_start,
                'bucket_end': bucket_end,
                'paid_amount': ZERO,
                'expected_amount': ZERO,
                'installment_count': 0,
                'installments': [],
            })
            if is_paid:
                row['paid_amount'] += installment.amount
            else:
                row['expected_amount'] += installment.amount
            row['installment_count'] += 1

            plan = installment.payment_plan
            college = self._college(plan)
            row['installments'].append({
                'installment_id': installment.pk,
                'payment_plan_id': plan.pk,
                'student_name': plan.student.full_name,
                'college_name': college.name if college else None,
                'amount': installment.amount,
                'status': installment.status,
                'student_due_date': installment.student_due_date,
                'paid_date': installment.paid_date,
            })

        result = []
        for bucket_start in sorted(buckets):
            row = buckets[bucket_start]
            row['installments'].sort(key=lambda item: (item['paid_date'] or item['student_due_date'], item['installment_id']))
            row['paid_amount'] = round_money(row['paid_amount'])
            row['expected_amount'] = round_money(row['expected_amount'])
            result.append(row)

        logger.debug(f"Cash flow projection for agency {self.agency.pk}: {len(result)} buckets ({bucket})")
        return result

    # ------------------------------------------------------------------
    # Commission breakdown
    # ------------------------------------------------------------------

    def _group_for(self, plan, dimension):
        """(key, name, extra) of the group a plan belongs to"""
        if plan.enrollment_id is None:
            return (UNASSIGNED if dimension == 'country' else None), UNASSIGNED, {}

        branch = plan.enrollment.branch
        college = branch.college
        if dimension == 'college':
            return college.pk, college.name, {'country': college.country}
        if dimension == 'branch':
            return branch.pk, f"{college.name} - {branch.name}", {
                'college_name': college.name,
                'city': branch.city,
            }
        country = college.country or UNASSIGNED
        return country, country, {}

    @staticmethod
    def _apply_filters(queryset, filters):
        filters = filters or {}
        if filters.get('college_id'):
            queryset = queryset.filter(payment_plan__enrollment__branch__college_id=filters['college_id'])
        if filters.get('branch_id'):
            queryset = queryset.filter(payment_plan__enrollment__branch_id=filters['branch_id'])
        if filters.get('country'):
            queryset = queryset.filter(payment_plan__enrollment__branch__college__country=filters['country'])
        if filters.get('city'):
            queryset = queryset.filter(payment_plan__enrollment__branch__city=filters['city'])
        return queryset

    def commission_breakdown(self, dimension: str = 'college', period: str = 'all',
                             filters: Optional[Dict[str, Any]] = None,
                             today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Commission totals per college, branch or country.

        An installment counts towards ``period`` when its student due date or its
        paid date falls inside the current calendar period. Cancelled
        installments add nothing to expected commission.
        """
        if dimension not in DIMENSIONS:
            raise ValidationFailedError(
                f"dimension must be one of {', '.join(DIMENSIONS)}, got: {dimension}",
                context={'dimension': dimension}
            )
        if period not in PERIODS:
            raise ValidationFailedError(
                f"period must be one of {', '.join(PERIODS)}, got: {period}",
                context={'period': period}
            )

        period_start, period_end = period_bounds(self._today(today), period)
        commission_totals = self._commission_totals()

        queryset = self._apply_filters(self._installments(), filters).select_related(
            'payment_plan__enrollment__branch__college'
        )

        groups = OrderedDict()
        for installment in queryset:
            if period_start is not None and not (
                period_start <= installment.student_due_date <= period_end
                or (installment.paid_date and period_start <= installment.paid_date <= period_end)
            ):
                continue

            plan = installment.payment_plan
            key, name, extra = self._group_for(plan, dimension)
            group = groups.setdefault(key, {
                'group_id': key,
                'group_name': name,
                **extra,
                'plans': set(),
                'total_paid': ZERO,
                'total_expected_commission': ZERO,
                'total_earned_commission': ZERO,
                'total_gst': ZERO,
                'total_with_gst': ZERO,
            })
            group['plans'].add(plan.pk)

            if installment.status == Installment.STATUS_CANCELLED:
                continue

            share = self._share(installment, commission_totals)
            group['total_expected_commission'] += share

            if installment.status == Installment.STATUS_PAID:
                group['total_paid'] += installment.amount
                group['total_earned_commission'] += share
                gst = self.calculator.gst_component(share, plan.gst_inclusive, plan.gst_rate)
                group['total_gst'] += gst
                group['total_with_gst'] += share if plan.gst_inclusive else share + gst

        rows = []
        for group in groups.values():
            plans = group.pop('plans')
            expected = round_money(group['total_expected_commission'])
            earned = round_money(group['total_earned_commission'])
            group.update({
                'plan_count': len(plans),
                'total_paid': round_money(group['total_paid']),
                'total_expected_commission': expected,
                'total_earned_commission': earned,
                'outstanding_commission': round_money(expected - earned),
                'total_gst': round_money(group['total_gst']),
                'total_with_gst': round_money(group['total_with_gst']),
            })
            rows.append(group)

        rows.sort(key=lambda row: (-row['total_earned_commission'], row['group_name']))
        return rows

    # ------------------------------------------------------------------
    # Seasonal trend
    # ------------------------------------------------------------------

    def seasonal_trend(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Commission earned per month for the trailing 12 months (oldest first), each
        compared with the same month a year earlier.
        """
        months = trailing_months(self._today(today), 12)
        range_start = add_months(months[0], -12)
        range_end = month_end(months[-1])

        commission_totals = self._commission_totals()
        paid = self._installments().filter(
            status=Installment.STATUS_PAID,
            generates_commission=True,
            paid_date__gte=range_start,
            paid_date__lte=range_end,
        ).select_related('payment_plan')

        earned_by_month = {}
        for installment in paid:
            key = month_start(installment.paid_date)
            earned_by_month[key] = earned_by_month.get(key, ZERO) + self._share(installment, commission_totals)

        rows = []
        for month in months:
            current = round_money(earned_by_month.get(month, ZERO))
            previous = round_money(earned_by_month.get(add_months(month, -12), ZERO))
            rows.append({
                'month': month.strftime('%Y-%m'),
                'month_start': month,
                'commission': current,
                'previous_year_commission': previous,
                'yoy_change': percentage_change(current, previous),
                'is_peak': False,
                'is_quiet': False,
            })

        values = [row['commission'] for row in rows]
        highest, lowest = max(values), min(values)
        if highest != lowest:
            for row in rows:
                row['is_peak'] = row['commission'] == highest
                row['is_quiet'] = row['commission'] == lowest
        return rows

    # ------------------------------------------------------------------
    # Status widgets
    # ------------------------------------------------------------------

    def payment_status_summary(self, today: Optional[date] = None) -> Dict[str, Dict[str, Any]]:
        """Counts and totals for pending, due soon, overdue and paid this month"""
        today = self._today(today)
        installments = self._installments()

        def totals(queryset):
            data = queryset.aggregate(total=Sum('amount'))
            return {'count': queryset.count(), 'total_amount': round_money(data['total'] or ZERO)}

        return {
            'pending': totals(installments.filter(status=Installment.STATUS_PENDING)),
            'due_soon': totals(installments.filter(
                status=Installment.STATUS_PENDING,
                student_due_date__gte=today,
                student_due_date__lte=today + timedelta(days=self.config.critical_days),
            )),
            'overdue': totals(installments.filter(status=Installment.STATUS_OVERDUE)),
            'paid_this_month': totals(installments.filter(
                status=Installment.STATUS_PAID,
                paid_date__gte=month_start(today),
                paid_date__lte=month_end(today),
            )),
        }

    def overdue_payments(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Overdue installments, oldest due date first"""
        today = self._today(today)
        overdue = (
            self._installments()
            .filter(status=Installment.STATUS_OVERDUE)
            .exclude(payment_plan__status=PaymentPlan.STATUS_CANCELLED)
            .select_related('payment_plan__student', 'payment_plan__enrollment__branch__college')
            .order_by('student_due_date', 'payment_plan_id', 'installment_number')
        )

        items = []
        total = ZERO
        for installment in overdue:
            plan = installment.payment_plan
            college = self._college(plan)
            total += installment.amount
            items.append({
                'installment_id': installment.pk,
                'payment_plan_id': plan.pk,
                'installment_number': installment.installment_number,
                'student_name': plan.student.full_name,
                'college_name': college.name if college else None,
                'amount': installment.amount,
                'student_due_date': installment.student_due_date,
                'college_due_date': installment.college_due_date,
                'days_overdue': installment.days_overdue(today),
            })

        return {
            'total_count': len(items),
            'total_amount': round_money(total),
            'installments': items,
        }

    # ------------------------------------------------------------------
    # KPIs
    # ------------------------------------------------------------------

    def _earned_between(self, start, end, commission_totals) -> Decimal:
        paid = self._installments().filter(
            status=Installment.STATUS_PAID,
            generates_commission=True,
            paid_date__gte=start,
            paid_date__lte=end,
        ).select_related('payment_plan')
        return round_money(sum((self._share(item, commission_totals) for item in paid), ZERO))

    def _collection_rate(self, start, end) -> Decimal:
        """Share (in %) of the amount due in [start, end] that has been paid"""
        due = self._installments().filter(student_due_date__gte=start, student_due_date__lte=end).exclude(
            status=Installment.STATUS_CANCELLED
        )
        total = due.aggregate(total=Sum('amount'))['total'] or ZERO
        paid = due.filter(status=Installment.STATUS_PAID).aggregate(total=Sum('amount'))['total'] or ZERO
        return round_money(safe_divide(paid * 100, total), Decimal('0.1'))

    def kpis(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Headline metrics for the current month with a trend against the previous one.

        Active plans and students count plans that are active now; the previous
        figures count active plans created on or before the previous month end.
        Outstanding is the open installment amount at each point; earned
        commission and collection rate are per calendar month.
        """
        today = self._today(today)
        current_start, current_end = month_start(today), month_end(today)
        previous_start = add_months(current_start, -1)
        previous_end = month_end(previous_start)

        plans = PaymentPlan.objects.for_agency(self.agency).filter(status=PaymentPlan.STATUS_ACTIVE)
        previous_plans = plans.filter(created_at__date__lte=previous_end)

        outstanding = self._installments().filter(
            status__in=Installment.OPEN_STATUSES,
            payment_plan__status=PaymentPlan.STATUS_ACTIVE,
        ).aggregate(total=Sum('amount'))['total'] or ZERO
        # Open at the previous month end: still open now, or paid after it
        previous_outstanding = self._installments().filter(
            payment_plan__in=previous_plans,
        ).exclude(status=Installment.STATUS_CANCELLED).exclude(
            status=Installment.STATUS_PAID, paid_date__lte=previous_end
        ).aggregate(total=Sum('amount'))['total'] or ZERO

        commission_totals = self._commission_totals()
        current = {
            'active_students': plans.order_by().values('student_id').distinct().count(),
            'active_payment_plans': plans.count(),
            'outstanding_amount': round_money(outstanding),
            'earned_commission': self._earned_between(current_start, current_end, commission_totals),
            'collection_rate': self._collection_rate(current_start, current_end),
        }
        previous = {
            'active_students': previous_plans.order_by().values('student_id').distinct().count(),
            'active_payment_plans': previous_plans.count(),
            'outstanding_amount': round_money(previous_outstanding),
            'earned_commission': self._earned_between(previous_start, previous_end, commission_totals),
            'collection_rate': self._collection_rate(previous_start, previous_end),
        }

        return {
            **current,
            'previous': previous,
            'trends': {key: trend_direction(value, previous[key]) for key, value in current.items()},
            'month_start': current_start,
            'previous_month_start': previous_start,
        }

    # ------------------------------------------------------------------
    # Student payment history
    # ------------------------------------------------------------------

    def student_payment_history(self, student_id, date_from: Optional[date] = None,
                                date_to: Optional[date] = None) -> Dict[str, Any]:
        """
        Every plan of one student with its installments, optionally limited to
        installments whose student due date falls in [date_from, date_to].
        """
        try:
            student = Student.objects.for_agency(self.agency).get(pk=student_id)
        except Student.DoesNotExist:
            raise NotFoundError(f"Student {student_id} not found", context={'student_id': student_id})
        if date_from and date_to and date_from > date_to:
            raise ValidationFailedError(
                "date_from must be on or before date_to",
                context={'date_from': date_from.isoformat(), 'date_to': date_to.isoformat()}
            )

        plans = (
            PaymentPlan.objects.for_agency(self.agency)
            .filter(student=student)
            .select_related('enrollment__branch__college')
            .prefetch_related('installments')
            .order_by('created_at', 'pk')
        )

        total_paid = ZERO
        total_outstanding = ZERO
        history = []
        for plan in plans:
            installments = [
                item for item in plan.installments.all()
                if (date_from is None or item.student_due_date >= date_from)
                and (date_to is None or item.student_due_date <= date_to)
            ]
            if not installments and (date_from or date_to):
                continue

            for item in installments:
                if item.status == Installment.STATUS_PAID:
                    total_paid += item.paid_amount or item.amount
                elif item.is_open:
                    total_outstanding += item.amount

            branch = plan.enrollment.branch if plan.enrollment_id else None
            history.append({
                'payment_plan_id': plan.pk,
                'college_name': branch.college.name if branch else None,
                'branch_name': branch.name if branch else None,
                'program_name': plan.enrollment.program_name if plan.enrollment_id else '',
                'plan_total_amount': plan.total_amount,
                'plan_start_date': plan.start_date or plan.first_college_due_date,
                'plan_status': plan.status,
                'installments': [
                    {
                        'installment_id': item.pk,
                        'installment_number': item.installment_number,
                        'is_initial_payment': item.installment_number == 0,
                        'amount': item.amount,
                        'student_due_date': item.student_due_date,
                        'college_due_date': item.college_due_date,
                        'paid_date': item.paid_date,
                        'paid_amount': item.paid_amount,
                        'status': item.status,
                    }
                    for item in installments
                ],
            })

        total_paid = round_money(total_paid)
        total_outstanding = round_money(total_outstanding)
        percentage_paid = round_money(safe_divide(total_paid * 100, total_paid + total_outstanding), Decimal('0.1'))

        return {
            'student': {'id': student.pk, 'full_name': student.full_name},
            'data': history,
            'summary': {
                'total_paid': total_paid,
                'total_outstanding': total_outstanding,
                'percentage_paid': percentage_paid,
            },
        }
