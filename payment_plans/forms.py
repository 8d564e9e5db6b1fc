"""
Forms for payment plan configuration input
"""
from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from agencies.models import Student, Enrollment
from core.utils import parse_date
from .engines.commission_calculator import normalize_rate
from .models import PaymentPlan


class DateListField(forms.Field):
    """Accepts a list of ISO dates or a comma separated string"""

    def to_python(self, value):
        if value in (None, '', []):
            return []
        if isinstance(value, str):
            value = [part.strip() for part in value.split(',') if part.strip()]
        try:
            return [parse_date(item) for item in value]
        except (TypeError, ValueError):
            raise ValidationError('Enter a list of valid dates (YYYY-MM-DD).', code='invalid_date_list')


class NumberListField(forms.Field):
    """Accepts a list of integers or a comma separated string"""

    def to_python(self, value):
        if value in (None, '', []):
            return []
        if isinstance(value, str):
            value = [part.strip() for part in value.split(',') if part.strip()]
        try:
            return sorted({int(item) for item in value})
        except (TypeError, ValueError):
            raise ValidationError('Enter a list of installment numbers.', code='invalid_number_list')


class PaymentPlanConfigForm(forms.Form):
    """Validates a raw plan configuration before anything is generated or saved"""

    student = forms.ModelChoiceField(queryset=Student.objects.none())
    enrollment = forms.ModelChoiceField(queryset=Enrollment.objects.none(), required=False)
    reference_number = forms.CharField(max_length=50, required=False)

    total_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    materials_cost = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    admin_fees = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    other_fees = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    gst_inclusive = forms.NullBooleanField(required=False)
    gst_rate = forms.DecimalField(max_digits=5, decimal_places=4, min_value=Decimal('0'), max_value=Decimal('1'), required=False)
    commission_rate = forms.DecimalField(max_digits=7, decimal_places=4)

    start_date = forms.DateField(required=False)
    first_college_due_date = forms.DateField(required=False)
    student_lead_time_days = forms.IntegerField(min_value=0, required=False)
    number_of_installments = forms.IntegerField(min_value=1, max_value=360, required=False)
    payment_frequency = forms.ChoiceField(choices=PaymentPlan.FREQUENCY, required=False)
    custom_due_dates = DateListField(required=False)
    pass_through_installments = NumberListField(
        required=False,
        help_text="Installment numbers collected on behalf of the college without commission"
    )

    initial_payment_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    initial_payment_due_date = forms.DateField(required=False)
    initial_payment_paid = forms.NullBooleanField(required=False)

    notes = forms.CharField(required=False)

    def __init__(self, *args, agency=None, **kwargs):
        super().__init__(*args, **kwargs)
        if agency is not None:
            self.fields['student'].queryset = Student.objects.for_agency(agency)
            self.fields['enrollment'].queryset = Enrollment.objects.for_agency(agency).select_related('student')

    def clean_commission_rate(self):
        # Range is enforced by the commission calculator (InvalidRateError)
        return normalize_rate(self.cleaned_data['commission_rate'])

    def clean(self):
        cleaned_data = super().clean()

        for fee in ('materials_cost', 'admin_fees', 'other_fees'):
            if cleaned_data.get(fee) is None:
                cleaned_data[fee] = Decimal('0.00')

        if cleaned_data.get('gst_inclusive') is None:
            cleaned_data['gst_inclusive'] = True
        cleaned_data['initial_payment_paid'] = bool(cleaned_data.get('initial_payment_paid'))

        frequency = cleaned_data.get('payment_frequency') or 'monthly'
        cleaned_data['payment_frequency'] = frequency

        if not cleaned_data.get('number_of_installments'):
            custom_dates = cleaned_data.get('custom_due_dates') or []
            cleaned_data['number_of_installments'] = len(custom_dates) if frequency == 'custom' and custom_dates else 1

        count = cleaned_data['number_of_installments']
        pass_through = cleaned_data.get('pass_through_installments') or []
        if any(number < 1 or number > count for number in pass_through):
            self.add_error('pass_through_installments', f'Installment numbers must be between 1 and {count}.')

        initial_amount = cleaned_data.get('initial_payment_amount')
        if initial_amount and initial_amount > 0 and not cleaned_data.get('initial_payment_due_date'):
            self.add_error('initial_payment_due_date', 'Required when an initial payment amount is set.')

        enrollment = cleaned_data.get('enrollment')
        student = cleaned_data.get('student')
        if enrollment and student and enrollment.student_id != student.pk:
            self.add_error('enrollment', 'Enrollment belongs to a different student.')

        return cleaned_data
