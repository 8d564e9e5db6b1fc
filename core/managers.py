"""
Agency-aware managers for the multi-tenant ledger.

Every query issued by the engine is scoped to exactly one agency. Passing no
agency is a programming error and raises instead of silently widening the query.
"""
from django.db import models

from .exceptions import TenantScopeError


def _agency_pk(agency):
    if agency is None or agency == '':
        raise TenantScopeError("An agency scope is required for ledger queries")
    return getattr(agency, 'pk', agency)


class AgencyQuerySet(models.QuerySet):
    """QuerySet with agency-aware methods."""

    def for_agency(self, agency):
        """Filter by agency (model instance or primary key)."""
        return self.filter(agency_id=_agency_pk(agency))

    def for_user(self, user):
        """Filter by the agency the user is a member of."""
        if not user or not user.is_authenticated:
            return self.none()
        membership = getattr(user, 'agency_membership', None)
        if membership is None:
            return self.none()
        return self.for_agency(membership.agency_id)


class AgencyAwareManager(models.Manager.from_queryset(AgencyQuerySet)):
    """Manager exposing ``for_agency`` / ``for_user`` on top of AgencyQuerySet."""
    pass
