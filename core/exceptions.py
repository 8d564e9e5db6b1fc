"""
Typed errors raised by the payment plan ledger.

Validation errors are raised before anything is written. Concurrency conflicts
are retryable after re-reading state. Invariant violations are bug-class and
are always logged by the raiser.
"""


class LedgerBaseException(Exception):
    """Base exception for all ledger errors"""
    error_code = 'ledger_error'

    def __init__(self, message, error_code=None, context=None):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self):
        return {
            'error': self.error_code,
            'message': self.message,
            'context': self.context,
        }


class ValidationFailedError(LedgerBaseException):
    """Bad input shape or range"""
    error_code = 'validation_error'


class InvalidScheduleLengthError(ValidationFailedError):
    """Custom due-date list does not match the number of installments"""
    error_code = 'invalid_schedule_length'


class InvalidRateError(ValidationFailedError):
    """Commission rate outside [0, 1]"""
    error_code = 'invalid_rate'


class NonPositiveAmountError(ValidationFailedError):
    """A computed or supplied amount is zero or negative"""
    error_code = 'non_positive_amount'


class MissingTimelineAnchorError(ValidationFailedError):
    """No start date or first college due date for a date-bearing frequency"""
    error_code = 'missing_timeline_anchor'


class StaleStatusError(LedgerBaseException):
    """Row status changed between read and write; re-read and retry"""
    error_code = 'stale_status'


class InvalidTransitionError(LedgerBaseException):
    """Requested status transition is not allowed by the installment state machine"""
    error_code = 'invalid_transition'


class PlanStateError(LedgerBaseException):
    """Operation not allowed for the plan's current status"""
    error_code = 'plan_state'


class InvariantViolationError(LedgerBaseException):
    """Ledger invariant broken; never corrected silently"""
    error_code = 'invariant_violation'


class TenantScopeError(LedgerBaseException):
    """Query attempted without an agency scope"""
    error_code = 'tenant_scope'


class NotFoundError(LedgerBaseException):
    """Record does not exist within the agency scope"""
    error_code = 'not_found'
