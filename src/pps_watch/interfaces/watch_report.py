"""
Watch Report Data Models

These dataclasses define what a finished (or aborted) acquisition run
hands back to its caller. The WatchReport renders as the classic
multi-line operator summary and serializes to JSON for the report file.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field, asdict
from typing import Optional
import json
import math
import time


@dataclass(frozen=True)
class RunningStats:
    """
    Point-in-time copy of the running aggregates.
    
    m2 is the sum of squared deviations from the running mean (Welford).
    """
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    max_divergence: int = 0
    overflow_count: int = 0

    @property
    def variance(self) -> Optional[float]:
        """Population variance, None when no events were seen."""
        if self.count == 0:
            return None
        return self.m2 / self.count

    @property
    def stddev(self) -> Optional[float]:
        """Population standard deviation, None when no events were seen."""
        variance = self.variance
        if variance is None:
            return None
        return math.sqrt(variance)


@dataclass
class WatchReport:
    """
    Final report for one source.
    
    Margin-dependent fields (overflow percentage, max streak) are only
    rendered when margin is non-zero.
    """
    device: str
    edge: str
    margin: int = 0
    
    # Aggregates
    total: int = 0
    overflows: int = 0
    max_unsync: int = 0
    max_divergence: int = 0
    mean: Optional[float] = None
    stddev: Optional[float] = None
    
    # Loop bookkeeping
    timeouts: int = 0
    interrupts: int = 0
    
    # Run state
    status: str = "stopped"              # "stopped" or "error"
    error: Optional[str] = None
    started_at: float = 0.0
    generated_at: float = field(default_factory=time.time)
    
    version: str = "1.0.0"
    
    @property
    def overflow_percent(self) -> Optional[float]:
        """Share of events over margin, None when undefined."""
        if self.total == 0:
            return None
        return 100.0 * self.overflows / self.total
    
    def to_dict(self) -> dict:
        data = asdict(self)
        data['overflow_percent'] = self.overflow_percent
        if not self.margin:
            # Counted mechanically but meaningless without a margin
            for key in ('overflows', 'overflow_percent', 'max_unsync'):
                data.pop(key)
        return data
    
    def to_json(self) -> str:
        """Serialize to JSON for the report file."""
        return json.dumps(self.to_dict(), indent=2)
    
    @classmethod
    def from_json(cls, json_str: str) -> "WatchReport":
        """Deserialize from JSON."""
        data = json.loads(json_str)
        data.pop('overflow_percent', None)
        return cls(**data)
    
    def format_text(self) -> str:
        """Render the operator summary printed at shutdown."""
        lines = ["", "", f"Total number of PPS signals: {self.total}"]
        if self.margin:
            percent = self.overflow_percent
            percent_text = f"{percent:f}%" if percent is not None else "undefined"
            lines.append(f"Number of overflows:         {self.overflows} ({percent_text})")
            lines.append(f"Maximum unsynchronized time: {self.max_unsync}")
        lines.append(f"Maximum divergence: {self.max_divergence}")
        lines.append(f"Mean value: {_format_number(self.mean)}")
        lines.append(f"Standard deviation: {_format_number(self.stddev)}")
        return "\n".join(lines)


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return "undefined"
    return f"{value:g}"
