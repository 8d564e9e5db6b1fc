from django.urls import path

from . import views

app_name = 'payment_plans'

urlpatterns = [
    path('payment-plans/', views.create_plan_api, name='create_plan'),
    path('payment-plans/<int:plan_id>/', views.plan_detail_api, name='plan_detail'),
    path('payment-plans/<int:plan_id>/cancel/', views.cancel_plan_api, name='cancel_plan'),
    path('payment-plans/<int:plan_id>/initial-payment/', views.record_initial_payment_api, name='record_initial_payment'),
    path('installments/<int:installment_id>/record-payment/', views.record_payment_api, name='record_payment'),
]
