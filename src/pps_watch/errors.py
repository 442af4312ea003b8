"""Exceptions raised by PPS sources and the acquisition engine."""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .interfaces.watch_report import WatchReport


class PPSError(Exception):
    """Base error; always names the device it concerns."""
    
    def __init__(self, device: str, message: str):
        super().__init__(f"{device}: {message}")
        self.device = device
        self.message = message


class PPSConfigError(PPSError):
    """Open, capability or parameter failure. Fatal before any statistics."""


class PPSFetchError(PPSError):
    """
    Fetch failed with something other than a timeout or an interrupt.
    
    Carries the statistics gathered up to the failure so the caller can
    still print them.
    """
    
    def __init__(self, device: str, message: str, report: Optional["WatchReport"] = None):
        super().__init__(device, message)
        self.report = report
