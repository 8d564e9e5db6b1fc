from datetime import time
from decimal import Decimal
from django.contrib.auth.models import User
from django.test import TestCase, override_settings

from core.exceptions import TenantScopeError
from .config import EngineConfig
from .models import Agency, AgencyMembership, Student


class EngineConfigTest(TestCase):

    def test_defaults_come_from_settings(self):
        with override_settings(PAYMENT_LEDGER={
            'DEFAULT_GST_RATE': '0.15',
            'DUE_SOON_THRESHOLDS': [60, 14],
            'CRITICAL_DAYS': 3,
            'SWEEP_LOCK_TIMEOUT': 120,
        }):
            config = EngineConfig.defaults()
            agency = Agency.objects.create(name='New Agency')

        self.assertEqual(config.gst_rate, Decimal('0.15'))
        self.assertEqual(config.due_soon_thresholds, (14, 60))
        self.assertEqual(config.critical_days, 3)
        self.assertEqual(config.sweep_lock_timeout, 120)
        self.assertEqual(agency.gst_rate, Decimal('0.15'))
        self.assertEqual(agency.critical_days, 3)

    def test_agency_overrides(self):
        agency = Agency.objects.create(
            name='Harbour Education',
            timezone='Australia/Sydney',
            gst_rate=Decimal('0.12'),
            overdue_cutoff_time=time(17, 0),
            due_soon_thresholds=[45, 15],
            critical_days=5,
        )

        config = EngineConfig.from_agency(agency)

        self.assertEqual(config.gst_rate, Decimal('0.12'))
        self.assertEqual(config.timezone, 'Australia/Sydney')
        self.assertEqual(config.overdue_cutoff_time, time(17, 0))
        self.assertEqual(config.due_soon_thresholds, (15, 45))
        self.assertEqual(config.critical_days, 5)

    def test_empty_thresholds_fall_back_to_settings(self):
        agency = Agency.objects.create(name='Harbour Education', due_soon_thresholds=[])
        self.assertEqual(EngineConfig.from_agency(agency).due_soon_thresholds, (30, 60, 90))


class AgencyScopeTest(TestCase):

    def setUp(self):
        self.agency = Agency.objects.create(name='Harbour Education')
        self.other = Agency.objects.create(name='Other Agency')
        Student.objects.create(agency=self.agency, full_name='Jane Student')
        Student.objects.create(agency=self.other, full_name='Other Student')

    def test_for_agency(self):
        names = list(Student.objects.for_agency(self.agency).values_list('full_name', flat=True))
        self.assertEqual(names, ['Jane Student'])
        self.assertEqual(Student.objects.for_agency(self.other.pk).count(), 1)

    def test_missing_agency_raises(self):
        with self.assertRaises(TenantScopeError):
            Student.objects.for_agency(None)

    def test_for_user(self):
        user = User.objects.create_user(username='agent', password='testpass123')
        self.assertEqual(Student.objects.for_user(user).count(), 0)

        AgencyMembership.objects.create(user=user, agency=self.other)
        user = User.objects.get(pk=user.pk)
        self.assertEqual(list(Student.objects.for_user(user).values_list('full_name', flat=True)), ['Other Student'])
