"""
JSON endpoints backing the agency dashboard widgets
"""
from django.contrib.auth.decorators import login_required
from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_http_methods
import logging

from core.api import agency_api, query_date
from .exports import cash_flow_workbook
from .services import DashboardReportService

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _projection(request):
    service = DashboardReportService(request.agency)
    return service.cash_flow_projection(
        window_days=request.GET.get('days', 90),
        bucket=request.GET.get('groupBy', 'week'),
        today=query_date(request),
    )


@login_required
@require_http_methods(["GET"])
@agency_api
def cash_flow_projection_api(request):
    """?days=1..365 (default 90) &groupBy=day|week|month (default week)"""
    return JsonResponse({'status': 'success', 'data': _projection(request)})


@login_required
@require_http_methods(["GET"])
@agency_api
def cash_flow_export(request):
    content = cash_flow_workbook(_projection(request))
    response = HttpResponse(content, content_type=XLSX_CONTENT_TYPE)
    response['Content-Disposition'] = 'attachment; filename="cash_flow_projection.xlsx"'
    return response


@login_required
@require_http_methods(["GET"])
@agency_api
def commission_breakdown_api(request):
    service = DashboardReportService(request.agency)
    filters = {
        key: request.GET[key]
        for key in ('college_id', 'branch_id', 'country', 'city')
        if request.GET.get(key)
    }
    data = service.commission_breakdown(
        dimension=request.GET.get('dimension', 'college'),
        period=request.GET.get('period', 'all'),
        filters=filters,
        today=query_date(request),
    )
    return JsonResponse({'status': 'success', 'data': data})


@login_required
@require_http_methods(["GET"])
@agency_api
def seasonal_commission_api(request):
    service = DashboardReportService(request.agency)
    return JsonResponse({'status': 'success', 'data': service.seasonal_trend(today=query_date(request))})


@login_required
@require_http_methods(["GET"])
@agency_api
def payment_status_summary_api(request):
    service = DashboardReportService(request.agency)
    return JsonResponse({'status': 'success', 'data': service.payment_status_summary(today=query_date(request))})


@login_required
@require_http_methods(["GET"])
@agency_api
def overdue_payments_api(request):
    service = DashboardReportService(request.agency)
    return JsonResponse({'status': 'success', 'data': service.overdue_payments(today=query_date(request))})


@login_required
@require_http_methods(["GET"])
@agency_api
def kpis_api(request):
    service = DashboardReportService(request.agency)
    return JsonResponse({'status': 'success', 'data': service.kpis(today=query_date(request))})


@login_required
@require_http_methods(["GET"])
@agency_api
def student_payment_history_api(request, student_id):
    """?date_from=&date_to= restrict installments by student due date"""
    service = DashboardReportService(request.agency)
    history = service.student_payment_history(
        student_id,
        date_from=query_date(request, 'date_from'),
        date_to=query_date(request, 'date_to'),
    )
    return JsonResponse({'status': 'success', **history})
