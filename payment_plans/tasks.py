"""
Background tasks for the payment plan ledger
"""
from typing import Any, Dict

from celery import shared_task
from celery.utils.log import get_task_logger
from django.utils import timezone

logger = get_task_logger(__name__)


@shared_task(bind=True, max_retries=3)
def run_overdue_sweep(self, agency_id: int = None, as_of: str = None) -> Dict[str, Any]:
    """
    Daily sweep moving pending installments past their due date to overdue.
    Safe to retry: already transitioned rows are skipped by the status filter.
    """
    from .overdue import run_overdue_sweep as sweep

    start_time = timezone.now()
    try:
        result = sweep(as_of=as_of, agency=agency_id)
    except Exception as exc:
        logger.error(f"Error running overdue sweep (agency={agency_id}): {str(exc)}")
        if self.request.retries < self.max_retries:
            logger.info(f"Retrying overdue sweep, retry {self.request.retries + 1}")
            raise self.retry(countdown=60 * (2 ** self.request.retries), exc=exc)
        raise

    duration = (timezone.now() - start_time).total_seconds()
    logger.info(f"Overdue sweep completed: {result.transitioned} installments in {duration:.2f}s")

    return {
        'status': 'success',
        **result.to_dict(),
        'duration': duration,
        'timestamp': timezone.now().isoformat(),
    }
