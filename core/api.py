"""
Helpers shared by the JSON endpoints: tenant resolution and error mapping.
"""
from functools import wraps
import json
import logging

from django.http import JsonResponse

from .exceptions import (
    InvariantViolationError,
    LedgerBaseException,
    NotFoundError,
    PlanStateError,
    StaleStatusError,
    TenantScopeError,
    ValidationFailedError,
    InvalidTransitionError,
)
from .utils import parse_date

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (ValidationFailedError, 400),
    (NotFoundError, 404),
    (StaleStatusError, 409),
    (PlanStateError, 409),
    (InvalidTransitionError, 409),
    (TenantScopeError, 403),
    (InvariantViolationError, 500),
]


def get_request_agency(request):
    """The agency the logged-in user belongs to"""
    membership = getattr(request.user, 'agency_membership', None)
    if membership is None or not membership.agency.is_active:
        raise TenantScopeError("User is not a member of an active agency")
    return membership.agency


def parse_json_body(request):
    """The request body as a dict; any other JSON value is rejected"""
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        raise ValidationFailedError("Request body is not valid JSON")
    if not isinstance(data, dict):
        raise ValidationFailedError(
            "Request body must be a JSON object",
            context={'received': type(data).__name__}
        )
    return data


def query_date(request, name='today'):
    """Optional YYYY-MM-DD query parameter"""
    value = request.GET.get(name)
    if not value:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationFailedError(f"{name} must be a date (YYYY-MM-DD)", context={name: value})


def error_response(exc: LedgerBaseException):
    status = 500
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            status = code
            break
    return JsonResponse({'status': 'error', **exc.to_dict()}, status=status)


def agency_api(view_func):
    """
    Resolve ``request.agency`` from the user's membership and turn ledger
    errors into JSON responses. Use under ``login_required``.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            request.agency = get_request_agency(request)
            return view_func(request, *args, **kwargs)
        except InvariantViolationError as exc:
            logger.error(f"Invariant violation in {view_func.__name__}: {exc.message}")
            return error_response(exc)
        except LedgerBaseException as exc:
            return error_response(exc)
    return wrapper
