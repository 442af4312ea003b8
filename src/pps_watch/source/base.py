"""
Source Handle contract.

A source is opened once per run, queried for capabilities, configured for
one capture edge and then fetched from until the run ends. fetch() reports
the expected non-data outcomes the way the OS does:

    TimeoutError      - no pulse within the wait window (ETIMEDOUT)
    InterruptedError  - a signal interrupted the wait (EINTR)
    OSError           - anything else, fatal to the run
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..interfaces.pps_api import PPSInfo, PPSParams


class PPSSource(ABC):
    """Abstract PPS source handle."""
    
    def __init__(self, device: str):
        self.device = device
    
    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying resource. Raises PPSConfigError."""
    
    @abstractmethod
    def get_capabilities(self) -> int:
        """Bitmask of PPS_* capability flags."""
    
    @abstractmethod
    def get_params(self) -> PPSParams:
        ...
    
    @abstractmethod
    def set_params(self, params: PPSParams) -> None:
        ...
    
    @abstractmethod
    def fetch(self, timeout: Optional[float]) -> PPSInfo:
        """
        Return the latest assert/clear events.
        
        Args:
            timeout: Seconds to wait for the next pulse; None waits forever
        """
    
    @abstractmethod
    def close(self) -> None:
        """Release the resource. Safe to call more than once."""
    
    def __enter__(self) -> "PPSSource":
        self.open()
        return self
    
    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
    
    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.device!r})"
