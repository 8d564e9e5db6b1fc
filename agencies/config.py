"""
Explicit engine configuration.

Engines never read Django settings or agency rows while computing. Callers
build an ``EngineConfig`` once (usually from the agency) and pass it in.
"""
from dataclasses import dataclass, field
from datetime import time
from decimal import Decimal
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone as dj_timezone


@dataclass(frozen=True)
class EngineConfig:
    gst_rate: Decimal = Decimal('0.10')
    timezone: str = 'UTC'
    overdue_cutoff_time: Optional[time] = None
    critical_days: int = 7
    due_soon_thresholds: Tuple[int, ...] = field(default=(30, 60, 90))
    sweep_lock_timeout: int = 600

    @classmethod
    def defaults(cls):
        """Config built from the PAYMENT_LEDGER settings block."""
        ledger = settings.PAYMENT_LEDGER
        return cls(
            gst_rate=Decimal(str(ledger['DEFAULT_GST_RATE'])),
            critical_days=int(ledger['CRITICAL_DAYS']),
            due_soon_thresholds=tuple(sorted(int(d) for d in ledger['DUE_SOON_THRESHOLDS'])),
            sweep_lock_timeout=int(ledger['SWEEP_LOCK_TIMEOUT']),
        )

    @classmethod
    def from_agency(cls, agency):
        """Config for one agency, falling back to settings for unset values."""
        base = cls.defaults()
        thresholds = agency.due_soon_thresholds or base.due_soon_thresholds
        return cls(
            gst_rate=agency.gst_rate if agency.gst_rate is not None else base.gst_rate,
            timezone=agency.timezone or base.timezone,
            overdue_cutoff_time=agency.overdue_cutoff_time,
            critical_days=agency.critical_days if agency.critical_days is not None else base.critical_days,
            due_soon_thresholds=tuple(sorted(int(d) for d in thresholds)),
            sweep_lock_timeout=base.sweep_lock_timeout,
        )

    def local_now(self):
        return dj_timezone.now().astimezone(ZoneInfo(self.timezone))

    def local_today(self):
        """Today's date in the agency's timezone."""
        return self.local_now().date()
