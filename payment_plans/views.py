"""
JSON endpoints for payment plans and installments
"""
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
import logging

from core.api import agency_api, parse_json_body, query_date
from .services import PaymentPlanService

logger = logging.getLogger(__name__)


def serialize_plan(plan):
    return {
        'id': plan.pk,
        'student_id': plan.student_id,
        'enrollment_id': plan.enrollment_id,
        'reference_number': plan.reference_number,
        'total_amount': plan.total_amount,
        'commission_rate': plan.commission_rate,
        'gst_inclusive': plan.gst_inclusive,
        'gst_rate': plan.gst_rate,
        'commissionable_base': plan.commissionable_base,
        'expected_commission': plan.expected_commission,
        'payment_frequency': plan.payment_frequency,
        'initial_payment_amount': plan.initial_payment_amount,
        'initial_payment_due_date': plan.initial_payment_due_date,
        'initial_payment_paid': plan.initial_payment_paid,
        'status': plan.status,
        'cancelled_at': plan.cancelled_at,
    }


def serialize_installment(installment):
    return {
        'id': installment.pk,
        'payment_plan_id': installment.payment_plan_id,
        'installment_number': installment.installment_number,
        'amount': installment.amount,
        'generates_commission': installment.generates_commission,
        'student_due_date': installment.student_due_date,
        'college_due_date': installment.college_due_date,
        'status': installment.status,
        'paid_date': installment.paid_date,
        'paid_amount': installment.paid_amount,
    }


@csrf_exempt
@login_required
@require_http_methods(["POST"])
@agency_api
def create_plan_api(request):
    """Create a payment plan and its installment schedule"""
    data = parse_json_body(request)
    service = PaymentPlanService(request.agency, user=request.user)

    if data.pop('preview', False):
        return JsonResponse({'status': 'success', **service.preview_plan(data)})

    plan, installments = service.create_plan(data)
    return JsonResponse({
        'status': 'success',
        'plan': serialize_plan(plan),
        'installments': [serialize_installment(item) for item in installments],
    }, status=201)


@login_required
@require_http_methods(["GET"])
@agency_api
def plan_detail_api(request, plan_id):
    """Derived plan view: status, next due date, earned commission, urgency"""
    service = PaymentPlanService(request.agency, user=request.user)
    return JsonResponse({'status': 'success', 'plan': service.plan_summary(plan_id, today=query_date(request))})


@csrf_exempt
@login_required
@require_http_methods(["POST"])
@agency_api
def cancel_plan_api(request, plan_id):
    service = PaymentPlanService(request.agency, user=request.user)
    plan = service.cancel_plan(plan_id)
    return JsonResponse({'status': 'success', 'plan': serialize_plan(plan)})


@csrf_exempt
@login_required
@require_http_methods(["POST"])
@agency_api
def record_initial_payment_api(request, plan_id):
    data = parse_json_body(request)
    service = PaymentPlanService(request.agency, user=request.user)
    plan = service.record_initial_payment(
        plan_id, paid=bool(data.get('paid', True)), paid_date=data.get('paid_date')
    )
    return JsonResponse({'status': 'success', 'plan': serialize_plan(plan)})


@csrf_exempt
@login_required
@require_http_methods(["POST"])
@agency_api
def record_payment_api(request, installment_id):
    """
    Mark an installment paid. Responds 409 when the installment changed
    underneath the caller; re-read and retry.
    """
    data = parse_json_body(request)
    service = PaymentPlanService(request.agency, user=request.user)
    installment = service.mark_installment_paid(installment_id, data.get('paid_date'), data.get('paid_amount'))
    return JsonResponse({'status': 'success', 'installment': serialize_installment(installment)})
