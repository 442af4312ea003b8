"""
Pytest configuration and fixtures for pps-watch tests.
"""

import pytest
import sys
import threading
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from pps_watch.interfaces.pps_api import (
    NSEC_PER_SEC,
    PPS_CANWAIT,
    PPS_CAPTUREASSERT,
    PPS_CAPTURECLEAR,
    PPS_OFFSETASSERT,
    PPS_OFFSETCLEAR,
    PPSInfo,
    PPSParams,
    TimingEvent,
)
from pps_watch.source.base import PPSSource

ALL_CAPS = (
    PPS_CAPTUREASSERT | PPS_CAPTURECLEAR
    | PPS_OFFSETASSERT | PPS_OFFSETCLEAR | PPS_CANWAIT
)


def info_for_offset(offset_ns: int, second: int, sequence: int) -> PPSInfo:
    """PPSInfo whose edges both sit offset_ns away from `second`."""
    sec, nsec = divmod(second * NSEC_PER_SEC + offset_ns, NSEC_PER_SEC)
    event = TimingEvent(seconds=sec, nanoseconds=nsec, sequence=sequence)
    return PPSInfo(assert_event=event, clear_event=event)


class ScriptedSource(PPSSource):
    """
    PPS source that replays a script, then cancels the run.
    
    Script items:
        int        - a pulse at that signed offset (ns) from the next second
        Exception  - raised from fetch() (TimeoutError, InterruptedError, OSError)
    """
    
    def __init__(self, device, script, cancel, capabilities=ALL_CAPS,
                 fail_get_params=None, fail_set_params=None):
        super().__init__(device)
        self.script = list(script)
        self.cancel = cancel
        self.capabilities = capabilities
        self.fail_get_params = fail_get_params
        self.fail_set_params = fail_set_params
        self.params = PPSParams()
        self.opened = False
        self.closed = False
        self.fetch_calls = 0
        self.second = 100
        self.sequence = 0
    
    def open(self):
        self.opened = True
    
    def get_capabilities(self):
        return self.capabilities
    
    def get_params(self):
        if self.fail_get_params:
            raise self.fail_get_params
        return self.params
    
    def set_params(self, params):
        if self.fail_set_params:
            raise self.fail_set_params
        self.params = params
    
    def fetch(self, timeout):
        self.fetch_calls += 1
        if not self.script:
            self.cancel.set()
            raise TimeoutError(110, "Connection timed out")
        
        item = self.script.pop(0)
        if not self.script:
            self.cancel.set()
        if isinstance(item, BaseException):
            raise item
        
        self.sequence += 1
        info = info_for_offset(item, self.second, self.sequence)
        self.second += 1
        return info
    
    def close(self):
        self.closed = True


@pytest.fixture
def cancel():
    """Fresh cancellation token."""
    return threading.Event()


@pytest.fixture
def scripted_source(cancel):
    """Factory for ScriptedSource bound to the test's cancel token."""
    def _make(script, device="/dev/pps-test", **kwargs):
        return ScriptedSource(device, script, cancel, **kwargs)
    return _make
