from datetime import date, datetime, time, timedelta
from typing import Iterator

from booking.services.availability import AvailabilityModel, WindowRule
from booking.services.clock import ProviderClock


def iterate_window_starts(window: WindowRule, block_length: timedelta) -> Iterator[time]:
    """Local start times on ``block_length`` stride whose whole block fits in the window."""
    anchor = date(2000, 1, 1)
    current = datetime.combine(anchor, window.start_local_time)
    window_end = datetime.combine(anchor, window.end_local_time)

    while current + block_length <= window_end:
        yield current.time()
        current += block_length


class CandidateSchedule:
    """Candidate session starts (aware UTC) over the forward horizon.

    Iterating recomputes the sequence from scratch, so the same schedule can be
    walked more than once. Output is ascending and free of duplicates.
    """

    def __init__(
        self,
        model: AvailabilityModel,
        now: datetime,
        horizon_days: int | None = None,
        horizon_business_days: int | None = None,
        clock: ProviderClock | None = None,
    ) -> None:
        if horizon_days is None and horizon_business_days is None:
            horizon_days, horizon_business_days = model.default_horizon()
        self.model = model
        self.now = now
        self.horizon_days = horizon_days
        self.horizon_business_days = horizon_business_days
        self.clock = clock or model.clock

    def days(self) -> Iterator[date]:
        if not self.model.has_windows():
            return

        current_day = self.clock.local_today(self.now)

        if self.horizon_business_days:
            qualifying = 0
            while qualifying < self.horizon_business_days:
                if self.model.windows_for(current_day.weekday()):
                    qualifying += 1
                    yield current_day
                current_day += timedelta(days=1)
            return

        for offset in range(self.horizon_days or 0):
            yield current_day + timedelta(days=offset)

    def horizon_end(self) -> datetime:
        """Exclusive UTC bound: local midnight after the last walked day."""
        last_day = None
        for last_day in self.days():
            pass
        if last_day is None:
            return self.clock.to_utc(self.clock.local_today(self.now), time(0, 0))
        return self.clock.to_utc(last_day + timedelta(days=1), time(0, 0))

    def __iter__(self) -> Iterator[datetime]:
        block_length = self.model.block_length()
        for current_day in self.days():
            day_starts: set[datetime] = set()
            for window in self.model.windows_for(current_day.weekday()):
                for local_start in iterate_window_starts(window, block_length):
                    day_starts.add(self.clock.to_utc(current_day, local_start))
            yield from sorted(day_starts)
