from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models

from core.exceptions import PlanStateError
from core.models import BaseLedgerModel, AgencyAwareModel


class PaymentPlan(BaseLedgerModel):
    """Financial agreement covering one student's course fees - Agency separated"""

    FREQUENCY = [
        ('monthly', 'Monthly'),
        ('quarterly', 'Quarterly'),
        ('custom', 'Custom Dates'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    # Identifiers
    student = models.ForeignKey('agencies.Student', on_delete=models.PROTECT, related_name='payment_plans')
    enrollment = models.ForeignKey(
        'agencies.Enrollment', on_delete=models.PROTECT,
        null=True, blank=True, related_name='payment_plans'
    )
    reference_number = models.CharField(max_length=50, blank=True)

    # Financial Totals
    total_amount = models.DecimalField(
        max_digits=12, decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    materials_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    admin_fees = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    other_fees = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    gst_inclusive = models.BooleanField(default=True)
    gst_rate = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal('0.10'))
    commission_rate = models.DecimalField(
        max_digits=5, decimal_places=4,
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('1'))],
        help_text="Commission rate as a fraction (0.15 = 15%)"
    )

    # Timeline Configuration
    start_date = models.DateField(null=True, blank=True)
    first_college_due_date = models.DateField(null=True, blank=True)
    student_lead_time_days = models.PositiveIntegerField(null=True, blank=True)
    number_of_installments = models.PositiveIntegerField(null=True, blank=True)
    payment_frequency = models.CharField(max_length=20, choices=FREQUENCY, default='monthly')

    # Initial Payment
    initial_payment_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    initial_payment_due_date = models.DateField(null=True, blank=True)
    initial_payment_paid = models.BooleanField(default=False)

    # Derived / cached
    commissionable_base = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    expected_commission = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS, default=STATUS_ACTIVE)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['agency', '-created_at']
        indexes = [
            models.Index(fields=['agency', 'status']),
            models.Index(fields=['agency', 'first_college_due_date']),
            models.Index(fields=['agency', 'student']),
        ]

    def __str__(self):
        return f"Payment Plan #{self.pk} for {self.student.full_name} ({self.agency.name})"

    @property
    def is_cancelled(self):
        return self.status == self.STATUS_CANCELLED

    @property
    def initial_amount(self):
        return self.initial_payment_amount or Decimal('0.00')

    def delete(self, *args, **kwargs):
        """Plans with installments are part of the financial audit trail and are cancelled, not deleted"""
        if self.pk and self.installments.exists():
            raise PlanStateError(
                f"Payment plan {self.pk} has installments and cannot be deleted; cancel it instead",
                context={'plan_id': self.pk}
            )
        return super().delete(*args, **kwargs)


class Installment(AgencyAwareModel):
    """One scheduled payment within a payment plan - Agency separated"""

    STATUS_PENDING = 'pending'
    STATUS_PAID = 'paid'
    STATUS_OVERDUE = 'overdue'
    STATUS_CANCELLED = 'cancelled'
    STATUS = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    OPEN_STATUSES = (STATUS_PENDING, STATUS_OVERDUE)

    # Relationships
    payment_plan = models.ForeignKey(PaymentPlan, on_delete=models.PROTECT, related_name='installments')

    # Installment Details
    installment_number = models.PositiveIntegerField(help_text="0 is the initial payment; regular installments are numbered 1, 2, 3, ...")
    amount = models.DecimalField(
        max_digits=12, decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    generates_commission = models.BooleanField(default=True)

    # Dual timeline
    student_due_date = models.DateField()
    college_due_date = models.DateField(null=True, blank=True)

    # Payment Status
    status = models.CharField(max_length=20, choices=STATUS, default=STATUS_PENDING)
    paid_date = models.DateField(null=True, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['payment_plan', 'installment_number']
        unique_together = [['payment_plan', 'installment_number']]
        indexes = [
            models.Index(fields=['agency', 'status', 'student_due_date']),
            models.Index(fields=['agency', 'paid_date']),
            models.Index(fields=['payment_plan', 'status']),
        ]

    def __str__(self):
        return f"Installment #{self.installment_number} of plan {self.payment_plan_id} - Due: {self.student_due_date}"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    def days_overdue(self, today):
        if self.status != self.STATUS_OVERDUE:
            return 0
        return max((today - self.student_due_date).days, 0)

    def delete(self, *args, **kwargs):
        raise PlanStateError(
            f"Installment {self.pk} is part of the financial audit trail and cannot be deleted",
            context={'installment_id': self.pk}
        )


class ActivityLog(AgencyAwareModel):
    """
    Append-only audit log of ledger state changes.
    System actions (overdue sweep) have no user.
    """

    ACTION_CHOICES = [
        ('plan_created', 'Plan Created'),
        ('plan_cancelled', 'Plan Cancelled'),
        ('marked_paid', 'Marked Paid'),
        ('marked_overdue', 'Marked Overdue'),
        ('cancelled', 'Installment Cancelled'),
        ('initial_payment_recorded', 'Initial Payment Recorded'),
    ]

    entity_type = models.CharField(max_length=30)
    entity_id = models.PositiveBigIntegerField()
    action = models.CharField(max_length=40, choices=ACTION_CHOICES)
    old_status = models.CharField(max_length=20, blank=True)
    new_status = models.CharField(max_length=20, blank=True)
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
        null=True, blank=True, related_name='ledger_activity'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['agency', 'entity_type', 'entity_id']),
            models.Index(fields=['agency', 'action', 'created_at']),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}#{self.entity_id} ({self.old_status} -> {self.new_status})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise PlanStateError("Activity log entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PlanStateError("Activity log entries are append-only")
