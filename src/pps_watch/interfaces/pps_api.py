"""
PPS API Data Models

Mirrors the RFC 2783 / Linux PPS API vocabulary: capability and mode bits,
timestamps for the two signal edges, and the parameter block a source
accepts. Both the kernel device adapter and the simulated source speak
these types, so the acquisition engine never sees raw ioctl buffers.

Reference:
- RFC 2783 (Pulse-Per-Second API for UNIX-like Operating Systems)
- <linux/pps.h>
"""

from dataclasses import dataclass, replace
from enum import Enum

NSEC_PER_SEC = 1_000_000_000

# Capture modes
PPS_CAPTUREASSERT = 0x01
PPS_CAPTURECLEAR = 0x02
PPS_CAPTUREBOTH = 0x03

# Offset compensation
PPS_OFFSETASSERT = 0x10
PPS_OFFSETCLEAR = 0x20

# Fetch behaviour
PPS_CANWAIT = 0x100
PPS_CANPOLL = 0x200

# Timestamp formats
PPS_TSFMT_TSPEC = 0x1000
PPS_TSFMT_NTPFP = 0x2000

PPS_API_VERS_1 = 1


class CaptureEdge(str, Enum):
    """Which signal transition is timestamped for a run."""
    ASSERT = "assert"   # rising edge
    CLEAR = "clear"     # falling edge

    @property
    def mode(self) -> int:
        """Capture mode bit for this edge."""
        return PPS_CAPTUREASSERT if self is CaptureEdge.ASSERT else PPS_CAPTURECLEAR

    @property
    def offset_mode(self) -> int:
        """Offset compensation bit for this edge."""
        return PPS_OFFSETASSERT if self is CaptureEdge.ASSERT else PPS_OFFSETCLEAR


@dataclass(frozen=True)
class TimingEvent:
    """One timestamped edge as delivered by the source."""
    seconds: int
    nanoseconds: int    # [0, 1e9)
    sequence: int


@dataclass(frozen=True)
class PPSInfo:
    """
    A fetched sample: the latest assert and clear events, each with its
    own sequence counter.
    """
    assert_event: TimingEvent
    clear_event: TimingEvent
    current_mode: int = 0

    def event_for(self, edge: CaptureEdge) -> TimingEvent:
        """Extract the event for the configured edge."""
        if edge is CaptureEdge.ASSERT:
            return self.assert_event
        return self.clear_event


@dataclass(frozen=True)
class PPSParams:
    """Source parameter block (struct pps_kparams)."""
    api_version: int = PPS_API_VERS_1
    mode: int = 0
    assert_offset_ns: int = 0
    clear_offset_ns: int = 0

    def with_capture(self, edge: CaptureEdge, offset_ns: int = 0) -> "PPSParams":
        """
        Return a copy with the edge enabled, and its offset compensation
        enabled too when offset_ns is non-zero.
        """
        mode = self.mode | edge.mode
        changes = {}
        if offset_ns:
            mode |= edge.offset_mode
            if edge is CaptureEdge.ASSERT:
                changes['assert_offset_ns'] = offset_ns
            else:
                changes['clear_offset_ns'] = offset_ns
        return replace(self, api_version=PPS_API_VERS_1, mode=mode, **changes)


def describe_capabilities(caps: int) -> str:
    """Human-readable list of capability bits, for logging."""
    names = [
        (PPS_CAPTUREASSERT, "CAPTUREASSERT"),
        (PPS_CAPTURECLEAR, "CAPTURECLEAR"),
        (PPS_OFFSETASSERT, "OFFSETASSERT"),
        (PPS_OFFSETCLEAR, "OFFSETCLEAR"),
        (PPS_CANWAIT, "CANWAIT"),
        (PPS_CANPOLL, "CANPOLL"),
        (PPS_TSFMT_TSPEC, "TSPEC"),
        (PPS_TSFMT_NTPFP, "NTPFP"),
    ]
    present = [name for bit, name in names if caps & bit]
    return "|".join(present) if present else "none"
