"""
Settlement run scheduling.

Run dates come from a frequency preset. For each run date the delivered
window ends ``cutoff_offset_days`` before the run date and the order window
ends on the run date itself. Both windows start the day after the previous
run's window ended; the first run starts from the persisted anchors (anchored
mode) or from the requested range (quick report mode).
"""
import calendar
import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import List, Optional, Tuple, Union

from dropship_payouts.engine.records import DateWindow, as_date
from dropship_payouts.exceptions import PayoutRequestError

logger = logging.getLogger(__name__)

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY = range(5)


class Frequency(str, enum.Enum):
    MONTHLY = 'monthly'
    TWICE_WEEKLY = 'twice_weekly'
    THRICE_WEEKLY = 'thrice_weekly'
    DAILY_WEEKDAY = 'daily_weekday'
    CUSTOM = 'custom'


FREQUENCY_WEEKDAYS = {
    Frequency.TWICE_WEEKLY: (TUESDAY, FRIDAY),
    Frequency.THRICE_WEEKLY: (MONDAY, WEDNESDAY, FRIDAY),
    Frequency.DAILY_WEEKDAY: (MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY),
}


@dataclass(frozen=True)
class SettlementSettings:
    """Settlement cycle settings and anchors; a new value is produced on every change."""
    frequency: Frequency = Frequency.MONTHLY
    cutoff_offset_days: int = 2
    anchored: bool = True
    custom_weekdays: Tuple[int, ...] = field(default_factory=tuple)
    last_payment_done_on: Optional[date] = None
    last_delivered_cutoff: Optional[date] = None
    version: int = 0

    def __post_init__(self):
        try:
            object.__setattr__(self, 'frequency', Frequency(self.frequency))
        except ValueError:
            raise PayoutRequestError(
                f"frequency must be one of {[f.value for f in Frequency]}, got {self.frequency!r}"
            )
        object.__setattr__(self, 'custom_weekdays', tuple(sorted(set(self.custom_weekdays or ()))))
        object.__setattr__(self, 'last_payment_done_on', as_date(self.last_payment_done_on))
        object.__setattr__(self, 'last_delivered_cutoff', as_date(self.last_delivered_cutoff))

        if self.cutoff_offset_days < 0:
            raise PayoutRequestError('cutoff_offset_days must not be negative')
        if any(day not in range(7) for day in self.custom_weekdays):
            raise PayoutRequestError('custom_weekdays must be integers 0 (Monday) to 6 (Sunday)')
        if self.frequency is Frequency.CUSTOM and not self.custom_weekdays:
            raise PayoutRequestError('custom frequency requires at least one weekday')

    @property
    def weekdays(self) -> Tuple[int, ...]:
        if self.frequency is Frequency.CUSTOM:
            return self.custom_weekdays
        return FREQUENCY_WEEKDAYS.get(self.frequency, ())

    def as_dict(self) -> dict:
        return {
            'frequency': self.frequency.value,
            'cutoff_offset_days': self.cutoff_offset_days,
            'anchored': self.anchored,
            'custom_weekdays': list(self.custom_weekdays),
            'last_payment_done_on': self.last_payment_done_on,
            'last_delivered_cutoff': self.last_delivered_cutoff,
            'version': self.version,
        }


@dataclass(frozen=True)
class RunDescriptor:
    run_date: date
    order_window: DateWindow
    delivered_window: DateWindow

    def as_dict(self) -> dict:
        return {
            'run_date': self.run_date.isoformat(),
            'order_window': self.order_window.as_dict(),
            'delivered_window': self.delivered_window.as_dict(),
        }


@dataclass(frozen=True)
class SkippedRun:
    run_date: date
    order_window: DateWindow
    delivered_window: DateWindow
    reason: str

    def as_dict(self) -> dict:
        return {
            'run_date': self.run_date.isoformat(),
            'order_window': self.order_window.as_dict(),
            'delivered_window': self.delivered_window.as_dict(),
            'reason': self.reason,
        }


@dataclass(frozen=True)
class ScheduleResult:
    runs: List[RunDescriptor]
    skipped: List[SkippedRun]

    @property
    def run_dates(self) -> List[date]:
        return [run.run_date for run in self.runs]


def run_dates(settings: SettlementSettings, range_from: date, range_to: date) -> List[date]:
    """Candidate run dates in ``[range_from, range_to]`` for the frequency preset."""
    dates = []
    current = range_from
    while current <= range_to:
        if settings.frequency is Frequency.MONTHLY:
            if current.day == calendar.monthrange(current.year, current.month)[1]:
                dates.append(current)
        elif current.weekday() in settings.weekdays:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def advance_anchors(settings: SettlementSettings, run: RunDescriptor) -> SettlementSettings:
    """Settings with anchors moved to the end of ``run``'s windows."""
    return replace(
        settings,
        last_payment_done_on=run.order_window.end,
        last_delivered_cutoff=run.delivered_window.end,
        version=settings.version + 1,
    )


class SettlementScheduler:
    def __init__(self, settings: SettlementSettings):
        self.settings = settings

    def generate_runs(self, range_from, range_to, earliest_order_date=None) -> ScheduleResult:
        """
        Generate settlement runs with their order and delivered windows.

        Args:
            range_from: First candidate run date (inclusive)
            range_to: Last candidate run date (inclusive)
            earliest_order_date: Earliest order date on record; bootstraps the
                first anchored window when no anchor has been persisted

        Returns:
            Runs in date order, plus runs skipped because a window would end
            before it starts
        """
        range_from, range_to = as_date(range_from), as_date(range_to)
        if range_from is None or range_to is None:
            raise PayoutRequestError('range_from and range_to are required')
        if range_from > range_to:
            raise PayoutRequestError(f"range_from {range_from} is after range_to {range_to}")

        result = self._chain(run_dates(self.settings, range_from, range_to), range_from, as_date(earliest_order_date))
        logger.info(
            f"Generated {len(result.runs)} {self.settings.frequency.value} run(s) "
            f"between {range_from} and {range_to} ({len(result.skipped)} skipped)"
        )
        return result

    def run_for(self, run_date, earliest_order_date=None, range_from=None) -> Union[RunDescriptor, SkippedRun]:
        """
        Windows for a single run on ``run_date``, which need not be a preset date.

        ``range_from`` only matters in quick report mode and defaults to the run date.
        """
        run_date = as_date(run_date)
        if run_date is None:
            raise PayoutRequestError('run_date is required')
        result = self._chain([run_date], as_date(range_from) or run_date, as_date(earliest_order_date))
        return result.runs[0] if result.runs else result.skipped[0]

    def _chain(self, dates: List[date], range_from: date, earliest_order_date: Optional[date]) -> ScheduleResult:
        order_start, delivered_start = self._first_window_starts(range_from, earliest_order_date)
        offset = timedelta(days=self.settings.cutoff_offset_days)

        runs, skipped = [], []
        for run_date in dates:
            order_window = DateWindow(order_start, run_date)
            delivered_window = DateWindow(delivered_start, run_date - offset)

            reason = self._skip_reason(order_window, delivered_window)
            if reason:
                logger.info(f"Skipping settlement run {run_date}: {reason}")
                skipped.append(SkippedRun(run_date, order_window, delivered_window, reason))
                continue

            runs.append(RunDescriptor(run_date, order_window, delivered_window))
            order_start = order_window.next_start()
            delivered_start = delivered_window.next_start()

        return ScheduleResult(runs, skipped)

    def _first_window_starts(self, range_from: date, earliest_order_date: Optional[date]) -> Tuple[date, date]:
        if not self.settings.anchored:
            return range_from, range_from

        bootstrap = earliest_order_date or range_from
        if self.settings.last_payment_done_on:
            order_start = self.settings.last_payment_done_on + timedelta(days=1)
        else:
            order_start = bootstrap
        if self.settings.last_delivered_cutoff:
            delivered_start = self.settings.last_delivered_cutoff + timedelta(days=1)
        else:
            delivered_start = bootstrap
        return order_start, delivered_start

    def _skip_reason(self, order_window: DateWindow, delivered_window: DateWindow) -> Optional[str]:
        if order_window.is_empty:
            return (
                f"order window would end {order_window.end} before it starts {order_window.start}"
            )
        if delivered_window.is_empty:
            return (
                f"delivered window would end {delivered_window.end} before it starts "
                f"{delivered_window.start} (cutoff offset {self.settings.cutoff_offset_days} day(s))"
            )
        return None

    def advance_anchors(self, run: RunDescriptor) -> SettlementSettings:
        return advance_anchors(self.settings, run)
