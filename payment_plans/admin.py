from django.contrib import admin

from .models import PaymentPlan, Installment, ActivityLog


class InstallmentInline(admin.TabularInline):
    model = Installment
    extra = 0
    can_delete = False
    fields = ['installment_number', 'amount', 'generates_commission', 'student_due_date',
              'college_due_date', 'status', 'paid_date', 'paid_amount']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class AgencyScopedAdmin(admin.ModelAdmin):
    def get_queryset(self, request):
        """Filter records by the user's agency"""
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        return qs.for_user(request.user)


@admin.register(PaymentPlan)
class PaymentPlanAdmin(AgencyScopedAdmin):
    inlines = [InstallmentInline]
    list_display = ['id', 'student', 'total_amount', 'commission_rate', 'expected_commission',
                    'payment_frequency', 'status', 'agency', 'created_at']
    list_filter = ['agency', 'status', 'payment_frequency', 'gst_inclusive']
    search_fields = ['reference_number', 'student__full_name']
    readonly_fields = ['commissionable_base', 'expected_commission', 'status', 'cancelled_at',
                       'created_at', 'updated_at']
    raw_id_fields = ['agency', 'student', 'enrollment', 'created_by', 'updated_by']

    fieldsets = (
        ('Agency & Student', {
            'fields': ('agency', 'student', 'enrollment', 'reference_number', 'status', 'cancelled_at')
        }),
        ('Financial Totals', {
            'fields': ('total_amount', 'materials_cost', 'admin_fees', 'other_fees')
        }),
        ('Commission', {
            'fields': ('commission_rate', 'gst_inclusive', 'gst_rate', 'commissionable_base', 'expected_commission')
        }),
        ('Timeline', {
            'fields': ('start_date', 'first_college_due_date', 'student_lead_time_days',
                       'number_of_installments', 'payment_frequency')
        }),
        ('Initial Payment', {
            'fields': ('initial_payment_amount', 'initial_payment_due_date', 'initial_payment_paid')
        }),
        ('Notes', {
            'fields': ('notes',),
            'classes': ('collapse',)
        }),
        ('Audit Information', {
            'fields': ('created_by', 'created_at', 'updated_by', 'updated_at'),
            'classes': ('collapse',)
        })
    )

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Installment)
class InstallmentAdmin(AgencyScopedAdmin):
    list_display = ['payment_plan', 'installment_number', 'student_due_date', 'college_due_date',
                    'amount', 'status', 'paid_date', 'agency']
    list_filter = ['agency', 'status', 'generates_commission']
    search_fields = ['payment_plan__student__full_name', 'payment_plan__reference_number']
    readonly_fields = ['status', 'paid_date', 'paid_amount', 'created_at', 'updated_at']
    raw_id_fields = ['agency', 'payment_plan']
    date_hierarchy = 'student_due_date'

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ActivityLog)
class ActivityLogAdmin(AgencyScopedAdmin):
    list_display = ['created_at', 'action', 'entity_type', 'entity_id', 'old_status', 'new_status', 'user', 'agency']
    list_filter = ['agency', 'action', 'entity_type']
    search_fields = ['description']
    date_hierarchy = 'created_at'

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
