from django.db import models
from django.conf import settings

from .managers import AgencyAwareManager


class TimeStampedModel(models.Model):
    """Abstract base model that provides created_at and updated_at timestamps."""
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class UserTrackingModel(models.Model):
    """Abstract model that tracks who created and modified records."""
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(app_label)s_%(class)s_created'
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(app_label)s_%(class)s_updated'
    )

    class Meta:
        abstract = True


class AgencyAwareModel(models.Model):
    """
    Abstract base class for every ledger record that belongs to a tenant.
    All reads go through ``objects.for_agency()`` so the agency filter is never optional.
    """
    agency = models.ForeignKey(
        'agencies.Agency',
        on_delete=models.PROTECT,
        related_name='%(app_label)s_%(class)s_set',
        help_text="Agency (tenant) this record belongs to",
    )

    objects = AgencyAwareManager()

    class Meta:
        abstract = True


class BaseLedgerModel(AgencyAwareModel, TimeStampedModel, UserTrackingModel):
    """Combined base class with tenant isolation and audit timestamps."""

    class Meta:
        abstract = True

    def __str__(self):
        return f"{self.__class__.__name__} #{self.pk} ({self.agency.name})"
