"""
Simulated PPS Source

Generates a synthetic pulse train for dry runs and tests, without a
kernel PPS device:

- Gaussian jitter around a configurable bias
- Optional dropouts, surfaced as fetch timeouts
- Offset compensation applied the way the kernel applies it
- Configurable capability set (e.g. no CANWAIT, to exercise polling)

Pulses are stamped on consecutive seconds starting from the wall clock at
open(); `period` controls how long fetch() blocks per pulse (0 for tests).
"""

import logging
import time
from typing import Optional

import numpy as np

from ..errors import PPSConfigError
from ..interfaces.pps_api import (
    NSEC_PER_SEC,
    PPS_CANWAIT,
    PPS_CAPTUREASSERT,
    PPS_CAPTURECLEAR,
    PPS_OFFSETASSERT,
    PPS_OFFSETCLEAR,
    PPS_TSFMT_TSPEC,
    PPSInfo,
    PPSParams,
    TimingEvent,
)
from .base import PPSSource

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITIES = (
    PPS_CAPTUREASSERT | PPS_CAPTURECLEAR
    | PPS_OFFSETASSERT | PPS_OFFSETCLEAR
    | PPS_CANWAIT | PPS_TSFMT_TSPEC
)


class SimulatedPPSSource(PPSSource):
    """
    Synthetic PPS source.
    
    Usage:
        source = SimulatedPPSSource('sim0', jitter_ns=250, seed=1, period=0)
    """
    
    def __init__(
        self,
        device: str = "simulated",
        jitter_ns: float = 1000.0,
        bias_ns: float = 0.0,
        pulse_width_ns: int = 0,
        dropout_probability: float = 0.0,
        period: float = 1.0,
        capabilities: int = DEFAULT_CAPABILITIES,
        seed: Optional[int] = None,
        start_second: Optional[int] = None
    ):
        """
        Initialize the simulated source.
        
        Args:
            device: Label used in logs and reports
            jitter_ns: Standard deviation of the pulse offset
            bias_ns: Mean pulse offset
            pulse_width_ns: Delay of the clear edge after the assert edge
            dropout_probability: Chance a fetch times out instead of delivering
            period: Seconds fetch() blocks per pulse
            capabilities: Advertised PPS_* capability bits
            seed: Random seed for reproducibility (optional)
            start_second: First pulse second (default: wall clock at open)
        """
        super().__init__(device)
        self.jitter_ns = jitter_ns
        self.bias_ns = bias_ns
        self.pulse_width_ns = pulse_width_ns
        self.dropout_probability = dropout_probability
        self.period = period
        self.capabilities = capabilities
        self.rng = np.random.default_rng(seed)
        self.start_second = start_second
        
        self.params = PPSParams()
        self.sequence = 0
        self.is_open = False
        self._next_second = 0
    
    def open(self) -> None:
        if self.is_open:
            return
        self._next_second = self.start_second if self.start_second is not None else int(time.time())
        self.is_open = True
        logger.debug(
            f"Simulated source {self.device}: jitter={self.jitter_ns}ns, "
            f"bias={self.bias_ns}ns, dropout={self.dropout_probability}"
        )
    
    def _require_open(self) -> None:
        if not self.is_open:
            raise PPSConfigError(self.device, "device is not open")
    
    def get_capabilities(self) -> int:
        self._require_open()
        return self.capabilities
    
    def get_params(self) -> PPSParams:
        self._require_open()
        return self.params
    
    def set_params(self, params: PPSParams) -> None:
        self._require_open()
        unsupported = params.mode & ~self.capabilities & ~PPS_TSFMT_TSPEC
        if unsupported:
            raise OSError(22, f"unsupported mode bits 0x{unsupported:x}")
        self.params = params
    
    def fetch(self, timeout: Optional[float]) -> PPSInfo:
        self._require_open()
        
        if self.period > 0:
            time.sleep(self.period if timeout is None else min(self.period, timeout))
        
        second = self._next_second
        self._next_second += 1
        
        if self.dropout_probability and self.rng.random() < self.dropout_probability:
            raise TimeoutError(110, "simulated dropout")
        
        self.sequence += 1
        offset = int(round(self.rng.normal(self.bias_ns, self.jitter_ns)))
        
        assert_ns = second * NSEC_PER_SEC + offset
        clear_ns = assert_ns + self.pulse_width_ns
        if self.params.mode & PPS_OFFSETASSERT:
            assert_ns += self.params.assert_offset_ns
        if self.params.mode & PPS_OFFSETCLEAR:
            clear_ns += self.params.clear_offset_ns
        
        return PPSInfo(
            assert_event=_event_at(assert_ns, self.sequence),
            clear_event=_event_at(clear_ns, self.sequence),
            current_mode=self.params.mode,
        )
    
    def close(self) -> None:
        self.is_open = False


def _event_at(total_ns: int, sequence: int) -> TimingEvent:
    seconds, nanoseconds = divmod(total_ns, NSEC_PER_SEC)
    return TimingEvent(seconds=seconds, nanoseconds=nanoseconds, sequence=sequence)
