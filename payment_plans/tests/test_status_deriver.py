from datetime import date, timedelta
from types import SimpleNamespace
from django.test import SimpleTestCase

from agencies.config import EngineConfig
from core.exceptions import InvalidTransitionError, InvariantViolationError
from ..engines.status_deriver import (
    StatusDeriver,
    check_transition,
    classify_due_date,
    classify_installment,
    derive_plan_status,
    next_due_date,
)


def installment(status, student_due_date=None, college_due_date=None):
    return SimpleNamespace(status=status, student_due_date=student_due_date, college_due_date=college_due_date)


class PlanStatusTest(SimpleTestCase):

    def test_all_paid_is_completed(self):
        self.assertEqual(derive_plan_status(['paid', 'paid', 'paid']), 'completed')

    def test_paid_pending_cancelled_is_active(self):
        self.assertEqual(derive_plan_status(['paid', 'pending', 'cancelled']), 'active')

    def test_paid_and_cancelled_is_completed(self):
        self.assertEqual(derive_plan_status(['paid', 'cancelled']), 'completed')

    def test_overdue_keeps_plan_active(self):
        self.assertEqual(derive_plan_status(['paid', 'overdue']), 'active')

    def test_explicit_cancellation_wins(self):
        self.assertEqual(derive_plan_status(['cancelled', 'cancelled'], explicitly_cancelled=True), 'cancelled')
        self.assertEqual(derive_plan_status(['paid', 'pending'], explicitly_cancelled=True), 'cancelled')

    def test_all_cancelled_without_plan_cancellation_is_invalid(self):
        """Installments are only cancelled through plan cancellation"""
        with self.assertRaises(InvariantViolationError):
            derive_plan_status(['cancelled', 'cancelled', 'cancelled'])

    def test_no_installments_is_invalid(self):
        with self.assertRaises(InvariantViolationError):
            derive_plan_status([])

    def test_next_due_date_uses_pending_only(self):
        installments = [
            installment('paid', date(2025, 1, 15)),
            installment('overdue', date(2025, 2, 15)),
            installment('pending', date(2025, 4, 15)),
            installment('pending', date(2025, 3, 15)),
            installment('cancelled', date(2025, 1, 1)),
        ]
        self.assertEqual(next_due_date(installments), date(2025, 3, 15))

    def test_next_due_date_none_when_nothing_pending(self):
        self.assertIsNone(next_due_date([installment('paid', date(2025, 1, 15))]))

    def test_status_deriver_uses_plan_cancellation(self):
        deriver = StatusDeriver(EngineConfig())
        plan = SimpleNamespace(status='cancelled')
        self.assertEqual(deriver.plan_status(plan, [installment('cancelled')]), 'cancelled')


class TransitionTest(SimpleTestCase):

    def test_allowed_transitions(self):
        for current, target in [('pending', 'paid'), ('pending', 'overdue'), ('overdue', 'paid'),
                                ('pending', 'cancelled'), ('overdue', 'cancelled')]:
            check_transition(current, target)

    def test_rejected_transitions(self):
        for current, target in [('paid', 'pending'), ('paid', 'cancelled'), ('cancelled', 'paid'),
                                ('overdue', 'pending'), ('paid', 'overdue')]:
            with self.assertRaises(InvalidTransitionError):
                check_transition(current, target)


class UrgencyTest(SimpleTestCase):

    def setUp(self):
        self.today = date(2025, 1, 1)

    def days(self, count):
        return self.today + timedelta(days=count)

    def test_levels(self):
        self.assertEqual(classify_due_date(self.days(-1), self.today).level, 'expired')
        self.assertEqual(classify_due_date(self.days(0), self.today).level, 'critical')
        self.assertEqual(classify_due_date(self.days(7), self.today).level, 'critical')
        self.assertEqual(classify_due_date(self.days(91), self.today).level, 'active')

    def test_smallest_covering_threshold_is_reported(self):
        urgency = classify_due_date(self.days(8), self.today)
        self.assertEqual((urgency.level, urgency.threshold), ('expiring_soon', 30))

        urgency = classify_due_date(self.days(45), self.today)
        self.assertEqual((urgency.level, urgency.threshold, urgency.days_remaining), ('expiring_soon', 60, 45))

    def test_custom_thresholds(self):
        urgency = classify_due_date(self.days(12), self.today, critical_days=3, thresholds=(14,))
        self.assertEqual((urgency.level, urgency.threshold), ('expiring_soon', 14))
        self.assertEqual(classify_due_date(self.days(15), self.today, critical_days=3, thresholds=(14,)).level, 'active')

    def test_views_use_their_own_timeline(self):
        item = installment('pending', student_due_date=self.days(-2), college_due_date=self.days(20))

        self.assertEqual(classify_installment(item, self.today, 'student').level, 'expired')
        self.assertEqual(classify_installment(item, self.today, 'remittance').level, 'expiring_soon')

    def test_missing_college_date_has_no_remittance_urgency(self):
        item = installment('pending', student_due_date=self.days(5))
        self.assertIsNone(classify_installment(item, self.today, 'remittance'))

    def test_unknown_view(self):
        with self.assertRaises(ValueError):
            classify_installment(installment('pending', self.today), self.today, 'college')

    def test_deriver_applies_config(self):
        deriver = StatusDeriver(EngineConfig(critical_days=10, due_soon_thresholds=(20,)))
        item = installment('pending', student_due_date=self.days(9))
        self.assertEqual(deriver.classify(item, self.today).level, 'critical')
