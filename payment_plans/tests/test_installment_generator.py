"""
Test Installment Generator

Schedule amounts, dual-timeline due dates and validation failures.
"""

from datetime import date
from decimal import Decimal
from django.test import SimpleTestCase

from core.exceptions import (
    InvalidScheduleLengthError,
    MissingTimelineAnchorError,
    NonPositiveAmountError,
)
from core.money import from_minor_units
from ..engines.installment_generator import InstallmentGenerator, ScheduleConfig


class InstallmentGeneratorTest(SimpleTestCase):
    """Test cases for InstallmentGenerator.generate"""

    def setUp(self):
        self.generator = InstallmentGenerator()

    def test_four_monthly_installments_on_college_timeline(self):
        """1200.00 over four months from 2025-01-15"""
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1200.00'),
            number_of_installments=4,
            payment_frequency='monthly',
            first_college_due_date=date(2025, 1, 15),
        ))

        self.assertEqual([item.amount for item in schedule.installments], [Decimal('300.00')] * 4)
        self.assertEqual(
            [item.college_due_date for item in schedule.installments],
            [date(2025, 1, 15), date(2025, 2, 15), date(2025, 3, 15), date(2025, 4, 15)]
        )
        # No lead time: student pays on the college date
        self.assertEqual(
            [item.student_due_date for item in schedule.installments],
            [item.college_due_date for item in schedule.installments]
        )
        self.assertEqual([item.installment_number for item in schedule.installments], [1, 2, 3, 4])
        self.assertTrue(all(item.status == 'pending' for item in schedule.installments))
        self.assertTrue(all(item.generates_commission for item in schedule.installments))

    def test_lead_time_moves_student_dates_earlier(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('600.00'),
            number_of_installments=2,
            first_college_due_date=date(2025, 3, 1),
            student_lead_time_days=7,
        ))

        first, second = schedule.installments
        self.assertEqual(first.college_due_date, date(2025, 3, 1))
        self.assertEqual(first.student_due_date, date(2025, 2, 22))
        self.assertEqual(second.college_due_date, date(2025, 4, 1))
        self.assertEqual(second.student_due_date, date(2025, 3, 25))

    def test_student_only_timeline_has_no_college_dates(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('900.00'),
            number_of_installments=3,
            start_date=date(2025, 5, 10),
        ))

        self.assertEqual(
            [item.student_due_date for item in schedule.installments],
            [date(2025, 5, 10), date(2025, 6, 10), date(2025, 7, 10)]
        )
        self.assertTrue(all(item.college_due_date is None for item in schedule.installments))

    def test_quarterly_steps_three_months(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1000.00'),
            number_of_installments=3,
            payment_frequency='quarterly',
            start_date=date(2025, 1, 1),
        ))

        self.assertEqual(
            [item.student_due_date for item in schedule.installments],
            [date(2025, 1, 1), date(2025, 4, 1), date(2025, 7, 1)]
        )

    def test_month_end_anchor_does_not_drift(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('300.00'),
            number_of_installments=4,
            start_date=date(2025, 1, 31),
        ))

        self.assertEqual(
            [item.student_due_date for item in schedule.installments],
            [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)]
        )

    def test_remainder_cents_go_to_first_installments(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('100.00'),
            number_of_installments=3,
            start_date=date(2025, 1, 1),
        ))

        self.assertEqual(
            [item.amount for item in schedule.installments],
            [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
        )

    def test_initial_payment_is_taken_out_of_the_pool(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1000.00'),
            number_of_installments=3,
            start_date=date(2025, 1, 1),
            initial_payment_amount=Decimal('100.00'),
        ))

        self.assertEqual(schedule.regular_pool, Decimal('900.00'))
        self.assertEqual([item.amount for item in schedule.installments], [Decimal('300.00')] * 3)
        self.assertEqual(schedule.installments_total + schedule.initial_payment_amount, Decimal('1000.00'))

    def test_initial_payment_becomes_installment_zero(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1000.00'),
            number_of_installments=3,
            first_college_due_date=date(2025, 2, 1),
            student_lead_time_days=7,
            initial_payment_amount=Decimal('100.00'),
            initial_payment_due_date=date(2025, 1, 5),
        ))

        initial = schedule.initial_installment
        self.assertEqual(initial.installment_number, 0)
        self.assertEqual(initial.amount, Decimal('100.00'))
        self.assertEqual(initial.student_due_date, date(2025, 1, 5))
        self.assertIsNone(initial.college_due_date)
        self.assertEqual(initial.status, 'pending')
        self.assertEqual([item.installment_number for item in schedule.all_installments], [0, 1, 2, 3])
        self.assertEqual(sum(item.amount for item in schedule.all_installments), Decimal('1000.00'))

        paid = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1000.00'),
            number_of_installments=3,
            start_date=date(2025, 2, 1),
            initial_payment_amount=Decimal('100.00'),
            initial_payment_paid=True,
        ))
        self.assertEqual(paid.initial_installment.status, 'paid')
        self.assertEqual(paid.initial_installment.student_due_date, date(2025, 2, 1))

    def test_no_initial_installment_without_initial_payment(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1000.00'),
            number_of_installments=2,
            start_date=date(2025, 1, 1),
            initial_payment_amount=Decimal('0'),
        ))

        self.assertIsNone(schedule.initial_installment)
        self.assertEqual(len(schedule.all_installments), 2)

    def test_sum_matches_total_for_every_count(self):
        totals = ['0.01', '0.59', '1.00', '99.99', '1200.00', '12345.67', '999999.99']
        for total in totals:
            total = Decimal(total)
            for count in range(1, 61):
                config = ScheduleConfig(
                    total_amount=total,
                    number_of_installments=count,
                    start_date=date(2025, 1, 1),
                )
                if total * 100 < count:
                    with self.assertRaises(NonPositiveAmountError):
                        self.generator.generate(config)
                    continue

                schedule = self.generator.generate(config)
                amounts = [item.amount for item in schedule.installments]
                self.assertEqual(len(amounts), count)
                self.assertEqual(sum(amounts, Decimal('0.00')), total, f"total={total} count={count}")
                self.assertLessEqual(max(amounts) - min(amounts), from_minor_units(1))

    def test_sum_matches_total_with_initial_payment(self):
        for count in range(1, 61):
            schedule = self.generator.generate(ScheduleConfig(
                total_amount=Decimal('5000.00'),
                number_of_installments=count,
                start_date=date(2025, 1, 1),
                initial_payment_amount=Decimal('333.33'),
            ))
            self.assertEqual(
                schedule.installments_total + schedule.initial_payment_amount,
                Decimal('5000.00')
            )

    def test_custom_dates_are_sorted(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('300.00'),
            number_of_installments=3,
            payment_frequency='custom',
            custom_due_dates=['2025-03-01', date(2025, 1, 10), '2025-02-05'],
        ))

        self.assertEqual(
            [item.student_due_date for item in schedule.installments],
            [date(2025, 1, 10), date(2025, 2, 5), date(2025, 3, 1)]
        )
        self.assertTrue(all(item.college_due_date is None for item in schedule.installments))

    def test_custom_dates_on_college_timeline(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('200.00'),
            number_of_installments=2,
            payment_frequency='custom',
            first_college_due_date=date(2025, 1, 10),
            student_lead_time_days=5,
            custom_due_dates=[date(2025, 1, 10), date(2025, 6, 10)],
        ))

        self.assertEqual(schedule.installments[1].college_due_date, date(2025, 6, 10))
        self.assertEqual(schedule.installments[1].student_due_date, date(2025, 6, 5))

    def test_custom_date_count_must_match(self):
        with self.assertRaises(InvalidScheduleLengthError):
            self.generator.generate(ScheduleConfig(
                total_amount=Decimal('300.00'),
                number_of_installments=3,
                payment_frequency='custom',
                custom_due_dates=[date(2025, 1, 10), date(2025, 2, 10)],
            ))

    def test_unknown_frequency(self):
        with self.assertRaises(InvalidScheduleLengthError) as ctx:
            self.generator.generate(ScheduleConfig(
                total_amount=Decimal('300.00'),
                number_of_installments=3,
                payment_frequency='fortnightly',
                start_date=date(2025, 1, 1),
            ))
        self.assertEqual(ctx.exception.error_code, 'invalid_frequency')

    def test_missing_anchor(self):
        with self.assertRaises(MissingTimelineAnchorError):
            self.generator.generate(ScheduleConfig(
                total_amount=Decimal('300.00'),
                number_of_installments=3,
                payment_frequency='monthly',
            ))

    def test_initial_payment_covering_total_is_rejected(self):
        with self.assertRaises(NonPositiveAmountError):
            self.generator.generate(ScheduleConfig(
                total_amount=Decimal('500.00'),
                number_of_installments=2,
                start_date=date(2025, 1, 1),
                initial_payment_amount=Decimal('500.00'),
            ))

    def test_zero_installments_rejected(self):
        with self.assertRaises(NonPositiveAmountError):
            self.generator.generate(ScheduleConfig(
                total_amount=Decimal('500.00'),
                number_of_installments=0,
                start_date=date(2025, 1, 1),
            ))

    def test_pass_through_lines_do_not_generate_commission(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('300.00'),
            number_of_installments=3,
            start_date=date(2025, 1, 1),
            pass_through_lines=[False, False, True],
        ))

        self.assertEqual(
            [item.generates_commission for item in schedule.installments],
            [True, True, False]
        )

    def test_summary(self):
        schedule = self.generator.generate(ScheduleConfig(
            total_amount=Decimal('1200.00'),
            number_of_installments=4,
            start_date=date(2025, 1, 15),
            initial_payment_amount=Decimal('200.00'),
        ))

        summary = schedule.summary()
        self.assertEqual(summary['total_amount'], '1200.00')
        self.assertEqual(summary['initial_payment'], '200.00')
        self.assertEqual(summary['regular_pool'], '1000.00')
        self.assertEqual(summary['total_installments'], 4)
        self.assertEqual(summary['amount_per_installment'], '250.00')
        self.assertEqual(schedule.installments[0].to_dict()['student_due_date'], '2025-01-15')
