"""Acquisition engine - PPS fetch loop and running quality statistics.

Contains:
- AcquisitionLoop: per-source fetch/dispatch loop with cooperative cancellation
- RunningStatistics, SyncLossTracker: O(1) streaming aggregates
"""

from .acquisition import AcquisitionLoop, FetchOutcome, FetchResult, WatchConfig, run_sources
from .statistics import (
    NormalizedEvent,
    RunningStatistics,
    SyncLossTracker,
    SyncState,
    normalize_event,
    normalize_offset,
)

__all__ = [
    'AcquisitionLoop', 'FetchOutcome', 'FetchResult', 'WatchConfig', 'run_sources',
    'NormalizedEvent', 'RunningStatistics', 'SyncLossTracker', 'SyncState',
    'normalize_event', 'normalize_offset',
]
