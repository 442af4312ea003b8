"""
pps-watch: PPS signal quality monitor

Watches the timestamps a kernel PPS source delivers, one pulse per second,
and keeps running statistics of how far each pulse lands from the whole
second: mean, standard deviation, maximum divergence, overflows beyond an
operator margin, and the longest run of consecutive overflows.

Architecture:
    /dev/ppsN (ioctl) → AcquisitionLoop → RunningStatistics + SyncLossTracker
                                        → overflow lines, final report

Statistics are streaming (Welford), so a run can last for days without
buffering its history.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.pps_api import CaptureEdge, PPSInfo, PPSParams, TimingEvent
from .interfaces.watch_report import RunningStats, WatchReport
from .errors import PPSError, PPSConfigError, PPSFetchError

__all__ = [
    "CaptureEdge",
    "PPSInfo",
    "PPSParams",
    "TimingEvent",
    "RunningStats",
    "WatchReport",
    "PPSError",
    "PPSConfigError",
    "PPSFetchError",
    "__version__",
]
