"""
PPS Quality Statistics

Three small pieces that turn a stream of timestamped pulses into quality
figures without ever keeping the history:

    TimingEvent ──▶ normalize_event() ──▶ RunningStatistics.update()
                                     └──▶ SyncLossTracker.observe()

================================================================================
NORMALIZATION
================================================================================
A pulse that arrives 20 ns early is stamped xxx.999999980. Taken literally
that is an offset of +999,999,980 ns. Every nanosecond value above half a
second is therefore read as belonging to the NEXT second, giving a signed
offset in (-500 ms, +500 ms] where early and late jitter are both small.

================================================================================
RUNNING STATISTICS
================================================================================
Welford's single-pass update keeps mean and M2 (sum of squared deviations)
numerically stable over millions of samples:

    delta  = x - mean
    mean  += delta / n
    M2    += delta * (x - mean)

Variance is reported as population variance, M2 / n.

================================================================================
SYNC-LOSS TRACKING
================================================================================
States: IN_SYNC (streak == 0) and OUT_OF_SYNC (streak > 0). An event with
|offset| >= margin extends the streak; the first in-margin event commits
the streak into max_streak and resets it. finalize() performs the same
commit so a run that stops mid-outage is not undercounted.
"""

from dataclasses import dataclass
from enum import Enum
import logging

from ..interfaces.pps_api import NSEC_PER_SEC, TimingEvent
from ..interfaces.watch_report import RunningStats

logger = logging.getLogger(__name__)

HALF_SECOND_NS = NSEC_PER_SEC // 2


@dataclass(frozen=True)
class NormalizedEvent:
    """A TimingEvent re-expressed relative to its nearest whole second."""
    seconds: int
    offset_ns: int      # (-500_000_000, 500_000_000]
    sequence: int


def normalize_offset(nanoseconds: int) -> int:
    """
    Map a nanosecond field in [0, 1e9) onto (-5e8, 5e8].
    
    Args:
        nanoseconds: Sub-second part of a timestamp
        
    Returns:
        Signed offset from the nearest whole second
    """
    if nanoseconds > HALF_SECOND_NS:
        return nanoseconds - NSEC_PER_SEC
    return nanoseconds


def normalize_event(event: TimingEvent) -> NormalizedEvent:
    """Normalize an event, carrying the second forward when it wraps."""
    offset = normalize_offset(event.nanoseconds)
    seconds = event.seconds + 1 if offset < 0 else event.seconds
    return NormalizedEvent(seconds=seconds, offset_ns=offset, sequence=event.sequence)


class RunningStatistics:
    """
    O(1) online aggregates over an unbounded offset stream.
    
    Owned by exactly one acquisition run; no locking.
    """
    
    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0
        self.max_divergence = 0
        self.overflow_count = 0
    
    def update(self, offset_ns: int) -> None:
        """Fold one normalized offset into the aggregates."""
        self.count += 1
        delta = offset_ns - self.mean
        self.mean += delta / self.count
        delta2 = offset_ns - self.mean
        self.m2 += delta * delta2
        
        divergence = abs(offset_ns)
        if divergence > self.max_divergence:
            self.max_divergence = divergence
    
    def record_overflow(self) -> None:
        self.overflow_count += 1
    
    def snapshot(self) -> RunningStats:
        """Immutable copy of the current aggregates."""
        return RunningStats(
            count=self.count,
            mean=self.mean,
            m2=self.m2,
            max_divergence=self.max_divergence,
            overflow_count=self.overflow_count,
        )


class SyncState(str, Enum):
    IN_SYNC = "IN_SYNC"
    OUT_OF_SYNC = "OUT_OF_SYNC"


class SyncLossTracker:
    """Tracks consecutive over-margin events and the longest such run."""
    
    def __init__(self):
        self.current_streak = 0
        self.max_streak = 0
    
    @staticmethod
    def classify(offset_ns: int, margin: int) -> bool:
        """
        Return True when the offset is inside the margin.
        
        The comparison is non-strict: |offset| == margin is an overflow.
        With margin 0 every event classifies as overflow; callers gate
        reporting on margin instead.
        """
        return abs(offset_ns) < margin
    
    @property
    def state(self) -> SyncState:
        return SyncState.OUT_OF_SYNC if self.current_streak else SyncState.IN_SYNC
    
    def observe(self, in_margin: bool) -> None:
        if not in_margin:
            self.current_streak += 1
            if self.current_streak == 1:
                logger.debug("Sync lost")
            return
        
        if self.current_streak:
            logger.debug(f"Sync regained after {self.current_streak} events")
        self._commit()
    
    @property
    def peak_streak(self) -> int:
        """Longest streak so far, counting one still open, without committing it."""
        return max(self.max_streak, self.current_streak)
    
    def finalize(self) -> int:
        """Commit a streak still open at shutdown and return max_streak."""
        self._commit()
        return self.max_streak
    
    def _commit(self) -> None:
        if self.current_streak > self.max_streak:
            self.max_streak = self.current_streak
        self.current_streak = 0
