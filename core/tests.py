from datetime import date
from decimal import Decimal
from django.test import SimpleTestCase

from .exceptions import InvalidRateError, LedgerBaseException, ValidationFailedError
from .money import (
    from_minor_units,
    percentage_change,
    round_money,
    safe_divide,
    split_evenly,
    to_decimal,
    to_minor_units,
    within_tolerance,
)
from .utils import add_months, bucket_bounds, parse_date, period_bounds, trailing_months, week_start


class MoneyTest(SimpleTestCase):

    def test_round_half_up(self):
        self.assertEqual(round_money('0.005'), Decimal('0.01'))
        self.assertEqual(round_money('136.3635'), Decimal('136.36'))
        self.assertEqual(round_money('2.675'), Decimal('2.68'))
        self.assertEqual(round_money(None), Decimal('0.00'))

    def test_floats_go_through_str(self):
        self.assertEqual(to_decimal(0.1), Decimal('0.1'))
        self.assertEqual(to_decimal(''), Decimal('0'))

    def test_minor_units(self):
        self.assertEqual(to_minor_units('12.345'), 1235)
        self.assertEqual(from_minor_units(1235), Decimal('12.35'))

    def test_split_evenly(self):
        self.assertEqual(split_evenly('100.00', 3), [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')])
        self.assertEqual(split_evenly('0.05', 5), [Decimal('0.01')] * 5)
        self.assertEqual(split_evenly('0.02', 3), [Decimal('0.01'), Decimal('0.01'), Decimal('0.00')])
        with self.assertRaises(ValueError):
            split_evenly('10.00', 0)

    def test_helpers(self):
        self.assertEqual(safe_divide('10', '0'), Decimal('0.00'))
        self.assertEqual(safe_divide('10', '4'), Decimal('2.5'))
        self.assertTrue(within_tolerance('100.00', '100.01'))
        self.assertFalse(within_tolerance('100.00', '100.02'))

    def test_percentage_change(self):
        self.assertEqual(percentage_change('150', '100'), Decimal('50.0'))
        self.assertEqual(percentage_change('1', '3'), Decimal('-66.7'))
        self.assertIsNone(percentage_change('10', '0'))


class DateUtilsTest(SimpleTestCase):

    def test_add_months_clamps_month_end(self):
        self.assertEqual(add_months(date(2025, 1, 31), 1), date(2025, 2, 28))
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2025, 1, 31), 2), date(2025, 3, 31))
        self.assertEqual(add_months(date(2025, 3, 15), -12), date(2024, 3, 15))

    def test_buckets(self):
        self.assertEqual(week_start(date(2025, 1, 12)), date(2025, 1, 6))
        self.assertEqual(bucket_bounds(date(2025, 1, 18), 'week'), (date(2025, 1, 13), date(2025, 1, 19)))
        self.assertEqual(bucket_bounds(date(2024, 2, 10), 'month'), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(bucket_bounds(date(2025, 1, 18), 'day'), (date(2025, 1, 18), date(2025, 1, 18)))
        with self.assertRaises(ValueError):
            bucket_bounds(date(2025, 1, 18), 'year')

    def test_periods(self):
        today = date(2025, 5, 20)
        self.assertEqual(period_bounds(today, 'all'), (None, None))
        self.assertEqual(period_bounds(today, 'year'), (date(2025, 1, 1), date(2025, 12, 31)))
        self.assertEqual(period_bounds(today, 'quarter'), (date(2025, 4, 1), date(2025, 6, 30)))
        self.assertEqual(period_bounds(today, 'month'), (date(2025, 5, 1), date(2025, 5, 31)))

    def test_trailing_months(self):
        months = trailing_months(date(2025, 2, 14), 12)
        self.assertEqual(months[0], date(2024, 3, 1))
        self.assertEqual(months[-1], date(2025, 2, 1))
        self.assertEqual(len(months), 12)

    def test_parse_date(self):
        self.assertEqual(parse_date('2025-01-15'), date(2025, 1, 15))
        self.assertEqual(parse_date(date(2025, 1, 15)), date(2025, 1, 15))
        with self.assertRaises(ValueError):
            parse_date('15/01/2025')


class ExceptionTest(SimpleTestCase):

    def test_error_payload(self):
        error = InvalidRateError('bad rate', context={'commission_rate': '2'})

        self.assertIsInstance(error, ValidationFailedError)
        self.assertEqual(error.to_dict(), {
            'error': 'invalid_rate',
            'message': 'bad rate',
            'context': {'commission_rate': '2'},
        })

    def test_error_code_override(self):
        error = LedgerBaseException('boom', error_code='custom')
        self.assertEqual(error.error_code, 'custom')
        self.assertEqual(LedgerBaseException.error_code, 'ledger_error')
