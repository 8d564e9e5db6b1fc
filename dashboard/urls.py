from django.urls import path

from . import views

app_name = 'dashboard'

urlpatterns = [
    path('cash-flow-projection/', views.cash_flow_projection_api, name='cash_flow_projection'),
    path('cash-flow-projection/export/', views.cash_flow_export, name='cash_flow_export'),
    path('commission-breakdown/', views.commission_breakdown_api, name='commission_breakdown'),
    path('seasonal-commission/', views.seasonal_commission_api, name='seasonal_commission'),
    path('payment-status-summary/', views.payment_status_summary_api, name='payment_status_summary'),
    path('overdue-payments/', views.overdue_payments_api, name='overdue_payments'),
    path('kpis/', views.kpis_api, name='kpis'),
    path('students/<int:student_id>/payment-history/', views.student_payment_history_api, name='student_payment_history'),
]
