"""
PPS Acquisition Loop

Drives one PPS source for the lifetime of a run:

    configure ──▶ ┌─▶ fetch ──▶ dispatch ─┐
                  └──── not cancelled ◀───┘ ──▶ finalize ──▶ WatchReport

Every fetch ends in exactly one FetchOutcome, consumed by a single
dispatch step:

    EVENT        fold into statistics, print overflow line if over margin
    TIMEOUT      no pulse in the wait window; keep looping
    INTERRUPTED  signal during the wait; retry the same fetch
    ERROR        fatal; raise PPSFetchError carrying the partial report

Cancellation is cooperative: a threading.Event checked after every fetch
returns, so the final report is always produced in the loop's own
control flow rather than from a signal handler.

Sources without PPS_CANWAIT are polled once per poll_interval instead of
blocking. Missed pulses are not reconstructed.

Several sources are watched by giving each its own AcquisitionLoop (and
thread) - see run_sources(). Loops share nothing but the cancel token and
an optional ReportWriter.
"""

from dataclasses import dataclass
from enum import Enum
import logging
import sys
import threading
import time
from typing import Dict, List, Optional, TextIO, Union

from ..errors import PPSConfigError, PPSError, PPSFetchError
from ..interfaces.pps_api import (
    PPS_CANWAIT,
    CaptureEdge,
    PPSInfo,
    TimingEvent,
    describe_capabilities,
)
from ..interfaces.watch_report import WatchReport
from ..output.report_writer import ReportWriter
from ..source.base import PPSSource
from .statistics import NormalizedEvent, RunningStatistics, SyncLossTracker, normalize_event

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 3.0     # seconds
DEFAULT_POLL_INTERVAL = 1.0     # seconds


class FetchOutcome(str, Enum):
    EVENT = "EVENT"
    TIMEOUT = "TIMEOUT"
    INTERRUPTED = "INTERRUPTED"
    ERROR = "ERROR"


@dataclass
class FetchResult:
    """Outcome of one fetch attempt."""
    outcome: FetchOutcome
    info: Optional[PPSInfo] = None
    error: Optional[OSError] = None


@dataclass
class WatchConfig:
    """Per-run settings, fixed once the loop starts."""
    edge: CaptureEdge = CaptureEdge.CLEAR
    margin: int = 0                         # ns, 0 disables overflow reporting
    timeout: float = DEFAULT_FETCH_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    offset_ns: int = 0                      # edge offset compensation, 0 = off
    status_every: int = 0                   # events between report file writes
    
    def __post_init__(self):
        if self.margin < 0:
            raise ValueError(f"margin must be non-negative, got {self.margin}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be non-negative, got {self.poll_interval}")
        if self.status_every < 0:
            raise ValueError(f"status_every must be non-negative, got {self.status_every}")


class AcquisitionLoop:
    """
    Acquisition run for a single PPS source.
    
    Owns the source handle and all statistics state for the run.
    
    Usage:
        cancel = threading.Event()
        loop = AcquisitionLoop(PPSDevice('/dev/pps0'), WatchConfig(margin=500), cancel)
        report = loop.run()      # returns once cancel is set
        print(report.format_text())
    """
    
    def __init__(
        self,
        source: PPSSource,
        config: Optional[WatchConfig] = None,
        cancel: Optional[threading.Event] = None,
        out: Optional[TextIO] = None,
        report_writer: Optional[ReportWriter] = None
    ):
        """
        Initialize the acquisition loop.
        
        Args:
            source: Unopened PPS source; the loop opens and closes it
            config: Run settings (default: clear edge, no margin)
            cancel: Cancellation token shared with the signal handler
            out: Stream for overflow lines (default: sys.stdout)
            report_writer: Optional report file sink
        """
        self.source = source
        self.config = config or WatchConfig()
        self.cancel = cancel or threading.Event()
        self.out = out
        self.report_writer = report_writer
        
        self.stats = RunningStatistics()
        self.tracker = SyncLossTracker()
        
        self.capabilities = 0
        self.can_wait = False
        self.timeouts = 0
        self.interrupts = 0
        self.started_at = 0.0
    
    @property
    def device(self) -> str:
        return self.source.device
    
    def configure(self) -> None:
        """
        Check capabilities and enable the configured capture edge.
        
        Raises:
            PPSConfigError: capability missing or the source refused
        """
        edge = self.config.edge
        
        try:
            self.capabilities = self.source.get_capabilities()
        except OSError as e:
            raise PPSConfigError(self.device, f"cannot get capabilities ({e.strerror or e})") from e
        
        logger.debug(f"{self.device}: capabilities {describe_capabilities(self.capabilities)}")
        
        if not self.capabilities & edge.mode:
            raise PPSConfigError(self.device, f"selected mode not supported (capture {edge.value})")
        if self.config.offset_ns and not self.capabilities & edge.offset_mode:
            raise PPSConfigError(self.device, f"offset compensation not supported ({edge.value} edge)")
        
        try:
            params = self.source.get_params()
        except OSError as e:
            raise PPSConfigError(self.device, f"cannot get parameters ({e.strerror or e})") from e
        
        try:
            self.source.set_params(params.with_capture(edge, self.config.offset_ns))
        except OSError as e:
            raise PPSConfigError(self.device, f"cannot set parameters ({e.strerror or e})") from e
        
        self.can_wait = bool(self.capabilities & PPS_CANWAIT)
        if not self.can_wait:
            logger.info(
                f"{self.device}: source cannot wait for events, "
                f"polling every {self.config.poll_interval:g}s"
            )
    
    def fetch_once(self) -> FetchResult:
        """Perform one fetch and classify its outcome."""
        try:
            info = self.source.fetch(self.config.timeout)
        except TimeoutError:
            return FetchResult(FetchOutcome.TIMEOUT)
        except InterruptedError:
            return FetchResult(FetchOutcome.INTERRUPTED)
        except OSError as e:
            return FetchResult(FetchOutcome.ERROR, error=e)
        return FetchResult(FetchOutcome.EVENT, info=info)
    
    def dispatch(self, result: FetchResult) -> None:
        """
        Act on one fetch outcome.
        
        Raises:
            PPSFetchError: for FetchOutcome.ERROR
        """
        if result.outcome is FetchOutcome.EVENT:
            self.process_event(result.info.event_for(self.config.edge))
        elif result.outcome is FetchOutcome.TIMEOUT:
            self.timeouts += 1
            logger.debug(f"{self.device}: no pulse within {self.config.timeout:g}s")
        elif result.outcome is FetchOutcome.INTERRUPTED:
            self.interrupts += 1
            logger.debug(f"{self.device}: fetch interrupted, retrying")
        else:
            error = result.error
            message = f"time_pps_fetch() error ({getattr(error, 'strerror', None) or error})"
            self.tracker.finalize()
            report = self.report(status="error", error=message)
            self._write_report(report)
            raise PPSFetchError(self.device, message, report)
    
    def process_event(self, event: TimingEvent) -> NormalizedEvent:
        """Run one event through normalization, statistics and sync tracking."""
        normalized = normalize_event(event)
        self.stats.update(normalized.offset_ns)
        
        in_margin = self.tracker.classify(normalized.offset_ns, self.config.margin)
        if not in_margin:
            self.stats.record_overflow()
            if self.config.margin:
                self._emit_overflow(normalized)
        self.tracker.observe(in_margin)
        
        if self.stats.count % 60 == 0:
            logger.debug(
                f"{self.device}: {self.stats.count} events, "
                f"mean={self.stats.mean:+.1f}ns, max_div={self.stats.max_divergence}ns"
            )
        
        if (self.report_writer and self.config.status_every
                and self.stats.count % self.config.status_every == 0):
            self._write_report(self.report())
        
        return normalized
    
    def _emit_overflow(self, event: NormalizedEvent) -> None:
        out = self.out or sys.stdout
        out.write(
            f"timestamp: {event.seconds}, sequence: {event.sequence}, "
            f"offset: {event.offset_ns: 6d}\n"
        )
        out.flush()
    
    def report(self, status: str = "stopped", error: Optional[str] = None) -> WatchReport:
        """
        Build a report from the current state without mutating it.
        
        Call tracker.finalize() first for the shutdown report; until then
        an open streak is still counted through peak_streak.
        """
        snapshot = self.stats.snapshot()
        return WatchReport(
            device=self.device,
            edge=self.config.edge.value,
            margin=self.config.margin,
            total=snapshot.count,
            overflows=snapshot.overflow_count,
            max_unsync=self.tracker.peak_streak,
            max_divergence=snapshot.max_divergence,
            mean=snapshot.mean if snapshot.count else None,
            stddev=snapshot.stddev,
            timeouts=self.timeouts,
            interrupts=self.interrupts,
            status=status,
            error=error,
            started_at=self.started_at,
        )
    
    def _write_report(self, report: WatchReport) -> None:
        if self.report_writer:
            self.report_writer.write(report)
    
    def run(self) -> WatchReport:
        """
        Open, configure and fetch until cancelled.
        
        The source is closed on every exit path.
        
        Returns:
            Final WatchReport after cancellation
            
        Raises:
            PPSConfigError: source could not be opened or configured
            PPSFetchError: fatal fetch error
        """
        logger.info(f'trying PPS source "{self.device}"')
        self.started_at = time.time()
        
        try:
            self.source.open()
            logger.info(f'found PPS source "{self.device}"')
            self.configure()
            
            if self.config.margin:
                logger.info(f"{self.device}: using margin {self.config.margin}")
            
            while not self.cancel.is_set():
                if not self.can_wait and self.cancel.wait(self.config.poll_interval):
                    break
                self.dispatch(self.fetch_once())
        finally:
            self.source.close()
        
        self.tracker.finalize()
        report = self.report()
        self._write_report(report)
        logger.info(
            f"{self.device}: stopped after {report.total} events "
            f"({self.timeouts} timeouts, {self.interrupts} interrupts)"
        )
        return report


RunResult = Union[WatchReport, Exception]


def run_sources(
    loops: List[AcquisitionLoop],
    cancel: threading.Event,
    join_interval: float = 0.5
) -> Dict[str, RunResult]:
    """
    Run independent acquisition loops until cancelled.
    
    A single loop runs in the calling thread. Several loops each get their
    own thread; the calling thread waits in short joins so it can keep
    handling signals. A failing loop does not stop the others.
    
    Args:
        loops: One loop per source, all sharing `cancel`
        cancel: Cancellation token
        join_interval: Seconds between join attempts
        
    Returns:
        WatchReport or the raised exception, by device

    Raises:
        ValueError: two loops watch the same device
    """
    devices = [loop.device for loop in loops]
    duplicates = sorted({device for device in devices if devices.count(device) > 1})
    if duplicates:
        raise ValueError(f"device given more than once: {', '.join(duplicates)}")

    results: Dict[str, RunResult] = {}
    
    def _run(loop: AcquisitionLoop) -> None:
        try:
            results[loop.device] = loop.run()
        except PPSError as e:
            results[loop.device] = e
        except Exception as e:
            logger.exception(f"{loop.device}: unexpected error in acquisition loop")
            results[loop.device] = e
    
    if len(loops) == 1:
        _run(loops[0])
        return results
    
    threads = [
        threading.Thread(target=_run, args=(loop,), name=f"pps-watch:{loop.device}", daemon=True)
        for loop in loops
    ]
    for thread in threads:
        thread.start()
    
    for thread in threads:
        while thread.is_alive():
            thread.join(timeout=join_interval)
    
    # Preserve the caller's device order
    return {loop.device: results[loop.device] for loop in loops}
