from django.contrib import admin

from .models import Agency, AgencyMembership, College, Branch, Student, Enrollment


class AgencyMembershipInline(admin.TabularInline):
    model = AgencyMembership
    extra = 0
    fields = ['user', 'role', 'created_at']
    readonly_fields = ['created_at']
    verbose_name = "Member"
    verbose_name_plural = "Members"


@admin.register(Agency)
class AgencyAdmin(admin.ModelAdmin):
    inlines = [AgencyMembershipInline]
    list_display = ['name', 'timezone', 'currency', 'gst_rate', 'overdue_cutoff_time', 'is_active', 'created_at']
    list_filter = ['is_active', 'timezone']
    search_fields = ['name']

    fieldsets = (
        ('Agency', {
            'fields': ('name', 'timezone', 'currency', 'is_active')
        }),
        ('Commission & Status Automation', {
            'fields': ('gst_rate', 'overdue_cutoff_time', 'critical_days', 'due_soon_thresholds')
        }),
    )


@admin.register(College)
class CollegeAdmin(admin.ModelAdmin):
    list_display = ['name', 'country', 'agency']
    list_filter = ['agency', 'country']
    search_fields = ['name']


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ['name', 'college', 'city', 'agency']
    list_filter = ['agency', 'city']
    search_fields = ['name', 'college__name']
    raw_id_fields = ['college']


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ['full_name', 'email', 'agency']
    list_filter = ['agency']
    search_fields = ['full_name', 'email']


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ['student', 'branch', 'program_name', 'agency', 'created_at']
    list_filter = ['agency']
    search_fields = ['student__full_name', 'branch__name', 'branch__college__name']
    raw_id_fields = ['student', 'branch']
