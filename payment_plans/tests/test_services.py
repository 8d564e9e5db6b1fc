"""
Test PaymentPlanService

Plan creation, optimistic mark-paid, cancellation cascade and the audit trail.
"""

from datetime import date
from decimal import Decimal
from unittest import mock
from django.test import TestCase

from core.exceptions import (
    InvalidRateError,
    InvalidTransitionError,
    InvalidScheduleLengthError,
    MissingTimelineAnchorError,
    NonPositiveAmountError,
    NotFoundError,
    PlanStateError,
    StaleStatusError,
    TenantScopeError,
    ValidationFailedError,
)
from ..models import ActivityLog, Installment, PaymentPlan
from ..services import PaymentPlanService
from .factories import create_agency, create_enrollment, create_member, create_student, example_config


class PaymentPlanServiceTestCase(TestCase):

    def setUp(self):
        self.agency = create_agency(gst_rate=Decimal('0.10'))
        self.user = create_member(self.agency)
        self.student = create_student(self.agency)
        self.enrollment = create_enrollment(self.agency, self.student)
        self.service = PaymentPlanService(self.agency, user=self.user)

    def create_example_plan(self, **overrides):
        return self.service.create_plan(example_config(self.student, **overrides))


class CreatePlanTest(PaymentPlanServiceTestCase):

    def test_example_plan(self):
        plan, installments = self.create_example_plan(enrollment=self.enrollment.pk)

        self.assertEqual(plan.commissionable_base, Decimal('1000.00'))
        self.assertEqual(plan.expected_commission, Decimal('136.36'))
        self.assertEqual(plan.commission_rate, Decimal('0.15'))
        self.assertEqual(plan.status, PaymentPlan.STATUS_ACTIVE)
        self.assertEqual(plan.enrollment, self.enrollment)
        self.assertEqual(plan.created_by, self.user)

        self.assertEqual([item.amount for item in installments], [Decimal('300.00')] * 4)
        self.assertEqual(
            [item.college_due_date for item in installments],
            [date(2025, 1, 15), date(2025, 2, 15), date(2025, 3, 15), date(2025, 4, 15)]
        )
        self.assertTrue(all(item.status == Installment.STATUS_PENDING for item in installments))
        self.assertTrue(all(item.agency_id == self.agency.pk for item in installments))
        self.assertEqual(sum(item.amount for item in installments), plan.total_amount)

    def test_creation_is_logged(self):
        plan, _ = self.create_example_plan()

        entry = ActivityLog.objects.for_agency(self.agency).get(action='plan_created')
        self.assertEqual(entry.entity_type, 'paymentplan')
        self.assertEqual(entry.entity_id, plan.pk)
        self.assertEqual(entry.user, self.user)
        self.assertEqual(entry.metadata['number_of_installments'], 4)

    def test_percentage_rate_is_normalized(self):
        plan, _ = self.create_example_plan(commission_rate='15')
        self.assertEqual(plan.commission_rate, Decimal('0.15'))
        self.assertEqual(plan.expected_commission, Decimal('136.36'))

    def test_agency_gst_rate_is_the_default(self):
        self.agency.gst_rate = Decimal('0.15')
        self.agency.save()
        service = PaymentPlanService(self.agency)

        config = example_config(self.student)
        del config['gst_rate']
        plan, _ = service.create_plan(config)

        self.assertEqual(plan.gst_rate, Decimal('0.15'))
        # 1000 / 1.15 * 0.15
        self.assertEqual(plan.expected_commission, Decimal('130.43'))

    def test_initial_payment_is_installment_zero(self):
        plan, installments = self.create_example_plan(
            initial_payment_amount='200.00',
            initial_payment_due_date='2025-01-01',
        )

        self.assertEqual(plan.initial_payment_amount, Decimal('200.00'))
        self.assertFalse(plan.initial_payment_paid)
        self.assertEqual([item.installment_number for item in installments], [0, 1, 2, 3, 4])
        self.assertEqual(
            [item.amount for item in installments],
            [Decimal('200.00')] + [Decimal('250.00')] * 4
        )

        initial = installments[0]
        self.assertEqual(initial.status, Installment.STATUS_PENDING)
        self.assertEqual(initial.student_due_date, date(2025, 1, 1))
        self.assertIsNone(initial.college_due_date)
        self.assertTrue(initial.generates_commission)
        self.assertEqual(sum(item.amount for item in installments), plan.total_amount)

    def test_initial_payment_received_at_creation(self):
        plan, installments = self.create_example_plan(
            initial_payment_amount='200.00',
            initial_payment_due_date='2025-01-01',
            initial_payment_paid=True,
        )

        self.assertTrue(plan.initial_payment_paid)
        self.assertEqual(installments[0].status, Installment.STATUS_PAID)
        self.assertEqual(installments[0].paid_amount, Decimal('200.00'))
        self.assertIsNotNone(installments[0].paid_date)
        self.assertEqual(plan.status, PaymentPlan.STATUS_ACTIVE)

    def test_pass_through_installments(self):
        plan, installments = self.create_example_plan(pass_through_installments='4')

        self.assertEqual([item.generates_commission for item in installments], [True, True, True, False])

        with self.assertRaises(ValidationFailedError):
            self.create_example_plan(pass_through_installments=[0, 5])

    def test_custom_frequency_defaults_count_to_dates(self):
        config = example_config(
            self.student,
            payment_frequency='custom',
            custom_due_dates='2025-03-01, 2025-01-20',
            first_college_due_date='',
        )
        del config['number_of_installments']
        plan, installments = self.service.create_plan(config)

        self.assertEqual(plan.number_of_installments, 2)
        self.assertEqual([item.student_due_date for item in installments], [date(2025, 1, 20), date(2025, 3, 1)])
        self.assertEqual([item.amount for item in installments], [Decimal('600.00')] * 2)

    def test_invalid_input_writes_nothing(self):
        cases = [
            (ValidationFailedError, {'total_amount': ''}),
            (ValidationFailedError, {'total_amount': '-5'}),
            (InvalidRateError, {'commission_rate': '150'}),
            (MissingTimelineAnchorError, {'first_college_due_date': ''}),
            (InvalidScheduleLengthError, {'payment_frequency': 'custom', 'custom_due_dates': ['2025-01-01']}),
            (NonPositiveAmountError, {'initial_payment_amount': '1200.00', 'initial_payment_due_date': '2025-01-01'}),
            (ValidationFailedError, {'initial_payment_amount': '100.00'}),
        ]
        for error_class, overrides in cases:
            with self.assertRaises(error_class, msg=str(overrides)):
                self.create_example_plan(**overrides)

        self.assertEqual(PaymentPlan.objects.count(), 0)
        self.assertEqual(Installment.objects.count(), 0)
        self.assertEqual(ActivityLog.objects.count(), 0)

    def test_validation_errors_carry_field_details(self):
        with self.assertRaises(ValidationFailedError) as ctx:
            self.create_example_plan(total_amount='')
        self.assertIn('total_amount', ctx.exception.context['errors'])

    def test_student_of_another_agency_is_rejected(self):
        other_agency = create_agency(name='Other Agency')
        outsider = create_student(other_agency, full_name='Other Student')

        with self.assertRaises(ValidationFailedError):
            self.service.create_plan(example_config(outsider))

    def test_enrollment_must_belong_to_student(self):
        other_student = create_student(self.agency, full_name='Someone Else')
        with self.assertRaises(ValidationFailedError):
            self.service.create_plan(example_config(other_student, enrollment=self.enrollment.pk))

    def test_creation_is_atomic(self):
        with mock.patch.object(Installment.objects, 'bulk_create', side_effect=RuntimeError('disk full')):
            with self.assertRaises(RuntimeError):
                self.create_example_plan()

        self.assertEqual(PaymentPlan.objects.count(), 0)
        self.assertEqual(ActivityLog.objects.count(), 0)

    def test_preview_writes_nothing(self):
        preview = self.service.preview_plan(example_config(self.student))

        self.assertEqual(len(preview['installments']), 4)
        self.assertEqual(preview['summary']['expected_commission'], '136.36')
        self.assertEqual(PaymentPlan.objects.count(), 0)

    def test_service_requires_agency(self):
        with self.assertRaises(TenantScopeError):
            PaymentPlanService(None)

    def test_unscoped_query_is_refused(self):
        with self.assertRaises(TenantScopeError):
            PaymentPlan.objects.for_agency(None)


class MarkInstallmentPaidTest(PaymentPlanServiceTestCase):

    def setUp(self):
        super().setUp()
        self.plan, self.installments = self.create_example_plan()

    def test_mark_paid(self):
        installment = self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

        self.assertEqual(installment.status, Installment.STATUS_PAID)
        self.assertEqual(installment.paid_date, date(2025, 1, 14))
        self.assertEqual(installment.paid_amount, Decimal('300.00'))

        entry = ActivityLog.objects.for_agency(self.agency).get(action='marked_paid')
        self.assertEqual((entry.old_status, entry.new_status), ('pending', 'paid'))
        self.assertEqual(entry.entity_id, installment.pk)

    def test_paid_amount_and_string_date(self):
        installment = self.service.mark_installment_paid(self.installments[0].pk, '2025-01-20', '299.50')
        self.assertEqual(installment.paid_amount, Decimal('299.50'))
        self.assertEqual(installment.paid_date, date(2025, 1, 20))

    def test_non_positive_paid_amount(self):
        with self.assertRaises(NonPositiveAmountError):
            self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14), '0')
        self.assertEqual(Installment.objects.get(pk=self.installments[0].pk).status, Installment.STATUS_PENDING)

    def test_bad_paid_date(self):
        with self.assertRaises(ValidationFailedError):
            self.service.mark_installment_paid(self.installments[0].pk, 'not-a-date')

    def test_second_payment_is_stale(self):
        self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

        with self.assertRaises(StaleStatusError):
            self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 15))

        self.assertEqual(ActivityLog.objects.filter(action='marked_paid').count(), 1)
        self.assertEqual(Installment.objects.get(pk=self.installments[0].pk).paid_date, date(2025, 1, 14))

    def test_concurrent_payment_exactly_one_succeeds(self):
        """Both callers read the installment as pending; only the first write lands"""
        stale_read = Installment.objects.get(pk=self.installments[0].pk)
        self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

        other = PaymentPlanService(self.agency)
        with mock.patch.object(PaymentPlanService, '_load_installment', return_value=stale_read):
            with self.assertRaises(StaleStatusError):
                other.mark_installment_paid(self.installments[0].pk, date(2025, 1, 16), '123.00')

        installment = Installment.objects.get(pk=self.installments[0].pk)
        self.assertEqual(installment.paid_amount, Decimal('300.00'))
        self.assertEqual(ActivityLog.objects.filter(action='marked_paid').count(), 1)

    def test_overdue_installment_can_be_paid(self):
        Installment.objects.filter(pk=self.installments[0].pk).update(status=Installment.STATUS_OVERDUE)

        installment = self.service.mark_installment_paid(self.installments[0].pk, date(2025, 2, 1))

        self.assertEqual(installment.status, Installment.STATUS_PAID)
        entry = ActivityLog.objects.get(action='marked_paid')
        self.assertEqual(entry.old_status, 'overdue')

    def test_paying_everything_completes_the_plan(self):
        for installment in self.installments:
            self.service.mark_installment_paid(installment.pk, installment.student_due_date)

        self.plan.refresh_from_db()
        self.assertEqual(self.plan.status, PaymentPlan.STATUS_COMPLETED)

    def test_installment_of_another_agency_is_not_found(self):
        other_service = PaymentPlanService(create_agency(name='Other Agency'))
        with self.assertRaises(NotFoundError):
            other_service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

    def test_plan_summary(self):
        self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

        summary = self.service.plan_summary(self.plan.pk, today=date(2025, 2, 10))

        self.assertEqual(summary['status'], 'active')
        self.assertEqual(summary['next_due_date'], date(2025, 2, 15))
        self.assertEqual(summary['earned_commission'], Decimal('34.09'))
        self.assertEqual(summary['outstanding_commission'], Decimal('102.27'))
        self.assertIsNone(summary['installments'][0]['student_urgency'])
        self.assertEqual(summary['installments'][1]['student_urgency']['level'], 'critical')
        self.assertEqual(summary['installments'][2]['remittance_urgency']['level'], 'expiring_soon')


class CancelPlanTest(PaymentPlanServiceTestCase):

    def setUp(self):
        super().setUp()
        self.plan, self.installments = self.create_example_plan()

    def test_cancel_cascades_to_open_installments(self):
        self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))
        Installment.objects.filter(pk=self.installments[1].pk).update(status=Installment.STATUS_OVERDUE)

        plan = self.service.cancel_plan(self.plan.pk)

        self.assertEqual(plan.status, PaymentPlan.STATUS_CANCELLED)
        self.assertIsNotNone(plan.cancelled_at)
        statuses = list(plan.installments.order_by('installment_number').values_list('status', flat=True))
        self.assertEqual(statuses, ['paid', 'cancelled', 'cancelled', 'cancelled'])

        self.assertEqual(ActivityLog.objects.filter(action='cancelled').count(), 3)
        self.assertEqual(ActivityLog.objects.filter(action='plan_cancelled').count(), 1)

    def test_cancel_twice_is_a_no_op(self):
        self.service.cancel_plan(self.plan.pk)
        self.service.cancel_plan(self.plan.pk)

        self.assertEqual(ActivityLog.objects.filter(action='plan_cancelled').count(), 1)

    def test_completed_plan_cannot_be_cancelled(self):
        for installment in self.installments:
            self.service.mark_installment_paid(installment.pk, installment.student_due_date)

        with self.assertRaises(PlanStateError):
            self.service.cancel_plan(self.plan.pk)

    def test_cancelled_installment_cannot_be_paid(self):
        self.service.cancel_plan(self.plan.pk)
        with self.assertRaises(StaleStatusError):
            self.service.mark_installment_paid(self.installments[0].pk, date(2025, 1, 14))

    def test_unknown_plan(self):
        with self.assertRaises(NotFoundError):
            self.service.cancel_plan(999999)


class InitialPaymentTest(PaymentPlanServiceTestCase):

    def setUp(self):
        super().setUp()
        # 1200.00 with a 400.00 deposit due 2025-01-15 and two 400.00 installments
        self.plan, self.installments = self.create_example_plan(
            materials_cost='0',
            gst_inclusive=False,
            commission_rate='0.10',
            number_of_installments=2,
            initial_payment_amount='400.00',
            initial_payment_due_date='2025-01-15',
            first_college_due_date='2025-02-15',
        )
        self.initial = self.installments[0]

    def test_record_initial_payment(self):
        plan = self.service.record_initial_payment(self.plan.pk, paid_date='2025-01-14')

        self.assertTrue(plan.initial_payment_paid)
        initial = Installment.objects.get(pk=self.initial.pk)
        self.assertEqual(initial.status, Installment.STATUS_PAID)
        self.assertEqual(initial.paid_date, date(2025, 1, 14))
        self.assertEqual(ActivityLog.objects.filter(action='initial_payment_recorded').count(), 1)
        self.assertEqual(ActivityLog.objects.filter(action='marked_paid').count(), 1)

        # Recording again changes nothing
        self.service.record_initial_payment(self.plan.pk)
        self.assertEqual(ActivityLog.objects.filter(action='initial_payment_recorded').count(), 1)

    def test_paying_installment_zero_sets_the_plan_flag(self):
        self.service.mark_installment_paid(self.initial.pk, date(2025, 1, 14))

        self.plan.refresh_from_db()
        self.assertTrue(self.plan.initial_payment_paid)

    def test_received_initial_payment_cannot_be_reverted(self):
        self.service.record_initial_payment(self.plan.pk)

        with self.assertRaises(InvalidTransitionError):
            self.service.record_initial_payment(self.plan.pk, paid=False)

    def test_plan_without_initial_payment(self):
        plan, _ = self.create_example_plan()
        with self.assertRaises(PlanStateError):
            self.service.record_initial_payment(plan.pk)

    def test_unpaid_deposit_keeps_the_plan_active(self):
        for installment in self.installments[1:]:
            self.service.mark_installment_paid(installment.pk, installment.student_due_date)

        summary = self.service.plan_summary(self.plan.pk, today=date(2025, 4, 1))

        self.assertEqual(summary['status'], PaymentPlan.STATUS_ACTIVE)
        self.assertEqual(summary['expected_commission'], Decimal('120.00'))
        self.assertEqual(summary['earned_commission'], Decimal('80.00'))
        self.assertEqual(summary['next_due_date'], date(2025, 1, 15))

        self.service.record_initial_payment(self.plan.pk, paid_date='2025-04-01')
        summary = self.service.plan_summary(self.plan.pk, today=date(2025, 4, 1))
        self.assertEqual(summary['status'], PaymentPlan.STATUS_COMPLETED)
        self.assertEqual(summary['earned_commission'], Decimal('120.00'))

    def test_cancelling_the_plan_cancels_the_deposit(self):
        self.service.cancel_plan(self.plan.pk)

        self.assertEqual(Installment.objects.get(pk=self.initial.pk).status, Installment.STATUS_CANCELLED)
        with self.assertRaises(PlanStateError):
            self.service.record_initial_payment(self.plan.pk)


class AuditTrailTest(PaymentPlanServiceTestCase):

    def setUp(self):
        super().setUp()
        self.plan, self.installments = self.create_example_plan()

    def test_plan_with_installments_cannot_be_deleted(self):
        with self.assertRaises(PlanStateError):
            self.plan.delete()
        self.assertTrue(PaymentPlan.objects.filter(pk=self.plan.pk).exists())

    def test_installments_cannot_be_deleted(self):
        with self.assertRaises(PlanStateError):
            self.installments[0].delete()

    def test_activity_log_is_append_only(self):
        entry = ActivityLog.objects.get(action='plan_created')
        entry.description = 'rewritten'
        with self.assertRaises(PlanStateError):
            entry.save()
        with self.assertRaises(PlanStateError):
            entry.delete()
