from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import User
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models

from core.models import AgencyAwareModel, TimeStampedModel


def default_gst_rate():
    return Decimal(str(settings.PAYMENT_LEDGER['DEFAULT_GST_RATE']))


def default_due_soon_thresholds():
    return list(settings.PAYMENT_LEDGER['DUE_SOON_THRESHOLDS'])


def default_critical_days():
    return settings.PAYMENT_LEDGER['CRITICAL_DAYS']


class Agency(TimeStampedModel):
    """Education agency - the tenant every ledger record belongs to"""

    name = models.CharField(max_length=150, help_text="Agency name")
    timezone = models.CharField(
        max_length=64, default='UTC',
        help_text="IANA timezone used for 'today' and the overdue cut-off"
    )
    currency = models.CharField(max_length=3, default='AUD')

    # Tax and status automation settings
    gst_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        default=default_gst_rate,
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('1'))],
        help_text="Flat GST rate applied to new plans (0.10 = 10%)"
    )
    overdue_cutoff_time = models.TimeField(
        null=True, blank=True,
        help_text="Local time after which installments due today are marked overdue"
    )
    due_soon_thresholds = models.JSONField(
        default=default_due_soon_thresholds,
        help_text="Day thresholds for 'expiring soon' classification, e.g. [30, 60, 90]"
    )
    critical_days = models.PositiveIntegerField(default=default_critical_days)

    is_active = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Agency"
        verbose_name_plural = "Agencies"
        ordering = ['name']

    def __str__(self):
        return self.name


class AgencyMembership(models.Model):
    """Links a user to the single agency whose data they can see"""

    ROLE_CHOICES = [
        ('agency_admin', 'Agency Admin'),
        ('agency_user', 'Agency User'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='agency_membership')
    agency = models.ForeignKey(Agency, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='agency_user')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user.username} - {self.agency.name} ({self.role})"


class College(AgencyAwareModel, TimeStampedModel):
    name = models.CharField(max_length=200)
    country = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ['name']
        unique_together = [['agency', 'name']]

    def __str__(self):
        return self.name


class Branch(AgencyAwareModel, TimeStampedModel):
    college = models.ForeignKey(College, on_delete=models.PROTECT, related_name='branches')
    name = models.CharField(max_length=200)
    city = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ['college__name', 'name']
        verbose_name_plural = "Branches"

    def __str__(self):
        return f"{self.college.name} - {self.name}"


class Student(AgencyAwareModel, TimeStampedModel):
    full_name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)

    class Meta:
        ordering = ['full_name']

    def __str__(self):
        return self.full_name


class Enrollment(AgencyAwareModel, TimeStampedModel):
    """A student's enrollment at a college branch; optional anchor for a payment plan"""

    student = models.ForeignKey(Student, on_delete=models.PROTECT, related_name='enrollments')
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name='enrollments')
    program_name = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['agency', 'branch']),
        ]

    def __str__(self):
        return f"{self.student.full_name} @ {self.branch}"
