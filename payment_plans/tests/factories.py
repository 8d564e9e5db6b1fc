"""
Shared fixtures for ledger tests
"""
from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User

from agencies.models import Agency, AgencyMembership, Branch, College, Enrollment, Student
from payment_plans.models import Installment, PaymentPlan


def create_agency(name='Test Agency', **kwargs):
    return Agency.objects.create(name=name, **kwargs)


def create_member(agency, username='agent', role='agency_admin'):
    user = User.objects.create_user(username=username, email=f'{username}@example.com', password='testpass123')
    AgencyMembership.objects.create(user=user, agency=agency, role=role)
    return user


def create_enrollment(agency, student, college_name='Sydney College', country='Australia',
                      branch_name='City Campus', city='Sydney'):
    college, _ = College.objects.get_or_create(agency=agency, name=college_name, defaults={'country': country})
    branch, _ = Branch.objects.get_or_create(agency=agency, college=college, name=branch_name, defaults={'city': city})
    return Enrollment.objects.create(agency=agency, student=student, branch=branch, program_name='Diploma')


def create_student(agency, full_name='Jane Student'):
    return Student.objects.create(agency=agency, full_name=full_name, email='student@example.com')


def create_plan(agency, student, lines, expected_commission='0.00', enrollment=None, gst_inclusive=True,
                gst_rate='0.10', status=PaymentPlan.STATUS_ACTIVE):
    """
    Persist a plan with explicit installment lines, bypassing the generator.

    Each line is a dict with ``amount`` and ``due`` plus optional ``status``,
    ``paid_date`` and ``generates_commission``.
    """
    total = sum((Decimal(str(line['amount'])) for line in lines), Decimal('0.00'))
    plan = PaymentPlan.objects.create(
        agency=agency,
        student=student,
        enrollment=enrollment,
        total_amount=total,
        commission_rate=Decimal('0.10'),
        gst_inclusive=gst_inclusive,
        gst_rate=Decimal(gst_rate),
        start_date=lines[0]['due'] if lines else date(2025, 1, 1),
        number_of_installments=len(lines),
        commissionable_base=total,
        expected_commission=Decimal(expected_commission),
        status=status,
    )
    for number, line in enumerate(lines, start=1):
        Installment.objects.create(
            agency=agency,
            payment_plan=plan,
            installment_number=number,
            amount=Decimal(str(line['amount'])),
            generates_commission=line.get('generates_commission', True),
            student_due_date=line['due'],
            college_due_date=line.get('college_due'),
            status=line.get('status', Installment.STATUS_PENDING),
            paid_date=line.get('paid_date'),
            paid_amount=Decimal(str(line['amount'])) if line.get('paid_date') else None,
        )
    return plan


def example_config(student, **overrides):
    """The 1200.00 / four monthly installments configuration"""
    config = {
        'student': student.pk,
        'total_amount': '1200.00',
        'materials_cost': '200.00',
        'admin_fees': '0',
        'other_fees': '0',
        'commission_rate': '0.15',
        'gst_inclusive': True,
        'gst_rate': '0.10',
        'number_of_installments': 4,
        'payment_frequency': 'monthly',
        'first_college_due_date': '2025-01-15',
    }
    config.update(overrides)
    return config
