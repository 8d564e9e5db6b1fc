"""
URL configuration for the payment plan ledger.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('payment_plans.urls')),
    path('api/dashboard/', include('dashboard.urls')),
]
