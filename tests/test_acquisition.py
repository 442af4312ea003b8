"""
Unit tests for the acquisition loop.

Drives AcquisitionLoop with scripted sources to cover the fetch outcome
dispatch, cancellation, configuration failures and the final report.
"""

import io
import threading

import pytest


def _run(source, cancel, **config_kwargs):
    from pps_watch.engine.acquisition import AcquisitionLoop, WatchConfig
    
    out = io.StringIO()
    loop = AcquisitionLoop(source, WatchConfig(**config_kwargs), cancel=cancel, out=out)
    report = loop.run()
    return loop, report, out.getvalue()


class TestEndToEnd:
    """Scenario runs through the whole pipeline."""
    
    def test_reference_scenario(self, scripted_source, cancel):
        """Five pulses, one of them a millisecond off, margin 500 ns."""
        source = scripted_source([10, -20, 30, -1_000_000, 40])
        loop, report, out = _run(source, cancel, margin=500)
        
        assert report.total == 5
        assert report.overflows == 1
        assert report.max_divergence == 1_000_000
        assert report.max_unsync == 1
        assert report.mean == pytest.approx((10 - 20 + 30 - 1_000_000 + 40) / 5)
        assert report.mean == pytest.approx(-199988)
        assert report.status == "stopped"
        
        lines = out.splitlines()
        assert lines == ["timestamp: 103, sequence: 4, offset: -1000000"]
    
    def test_report_text(self, scripted_source, cancel):
        source = scripted_source([10, -20, 30, -1_000_000, 40])
        _, report, _ = _run(source, cancel, margin=500)
        
        text = report.format_text()
        assert "Total number of PPS signals: 5" in text
        assert "Number of overflows:         1 (20.000000%)" in text
        assert "Maximum unsynchronized time: 1" in text
        assert "Maximum divergence: 1000000" in text
        assert "Mean value: -199988" in text
        assert "Standard deviation: " in text
    
    def test_source_closed_after_run(self, scripted_source, cancel):
        source = scripted_source([1, 2])
        _run(source, cancel)
        assert source.opened
        assert source.closed
    
    def test_open_streak_counted_at_shutdown(self, scripted_source, cancel):
        """A run that ends mid-outage reports the open streak."""
        source = scripted_source([1, 900, 2, 900, 900, 900])
        _, report, out = _run(source, cancel, margin=100)
        
        assert report.max_unsync == 3
        assert report.overflows == 4
        assert len(out.splitlines()) == 4


class TestCancellation:
    """Test cooperative cancellation."""
    
    def test_zero_event_report(self, scripted_source, cancel):
        """Cancelled before any pulse: zero counts, undefined stddev."""
        cancel.set()
        source = scripted_source([10, 20])
        _, report, out = _run(source, cancel, margin=500)
        
        assert source.fetch_calls == 0
        assert source.closed
        assert report.total == 0
        assert report.stddev is None
        assert report.mean is None
        assert report.overflow_percent is None
        assert out == ""
        
        text = report.format_text()
        assert "Total number of PPS signals: 0" in text
        assert "Standard deviation: undefined" in text
    
    def test_cancel_from_another_thread(self, cancel):
        """A loop blocked on a quiet source stops once cancel is set."""
        from pps_watch.engine.acquisition import AcquisitionLoop, WatchConfig
        from pps_watch.source.simulated import SimulatedPPSSource
        
        source = SimulatedPPSSource("sim0", dropout_probability=1.0, period=0.01, seed=1)
        loop = AcquisitionLoop(source, WatchConfig(), cancel=cancel, out=io.StringIO())
        
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        try:
            report = loop.run()
        finally:
            timer.cancel()
        
        assert report.total == 0
        assert report.timeouts > 0
        assert not source.is_open


class TestFetchOutcomes:
    """Test dispatch of timeouts, interrupts and errors."""
    
    def test_timeouts_do_not_change_statistics(self, scripted_source, cancel):
        offsets = [15, -40, 700, 3, -9]
        _, plain, _ = _run(scripted_source(offsets), cancel, margin=100)
        
        cancel.clear()
        interleaved = [TimeoutError(110, "timed out"), 15, -40, TimeoutError(110, "timed out"),
                       TimeoutError(110, "timed out"), 700, 3, TimeoutError(110, "timed out"), -9]
        _, noisy, _ = _run(scripted_source(interleaved), cancel, margin=100)
        
        for field in ("total", "overflows", "max_unsync", "max_divergence", "mean", "stddev"):
            assert getattr(noisy, field) == getattr(plain, field)
        assert noisy.timeouts == 4
        assert plain.timeouts == 0
    
    def test_interrupt_is_retried(self, scripted_source, cancel):
        source = scripted_source([InterruptedError(4, "Interrupted system call"), 25, 35])
        _, report, _ = _run(source, cancel)
        
        assert report.interrupts == 1
        assert report.total == 2
        assert source.fetch_calls == 3
    
    def test_fetch_error_is_fatal(self, scripted_source, cancel):
        from pps_watch.errors import PPSFetchError
        
        source = scripted_source([5, 700, OSError(5, "Input/output error"), 6])
        with pytest.raises(PPSFetchError) as exc_info:
            _run(source, cancel, margin=100)
        
        err = exc_info.value
        assert err.device == "/dev/pps-test"
        assert "Input/output error" in str(err)
        assert source.closed
        
        # Partial report, open streak committed
        assert err.report.status == "error"
        assert err.report.total == 2
        assert err.report.max_unsync == 1
    
    def test_fetch_once_classifies(self, scripted_source, cancel):
        from pps_watch.engine.acquisition import AcquisitionLoop, FetchOutcome
        
        source = scripted_source([
            12,
            TimeoutError(110, "t"),
            InterruptedError(4, "i"),
            PermissionError(1, "p"),
        ])
        loop = AcquisitionLoop(source, cancel=cancel)
        
        outcomes = [loop.fetch_once().outcome for _ in range(4)]
        assert outcomes == [
            FetchOutcome.EVENT,
            FetchOutcome.TIMEOUT,
            FetchOutcome.INTERRUPTED,
            FetchOutcome.ERROR,
        ]


class TestMargin:
    """Test margin gating of overflow reporting."""
    
    def test_zero_margin_tracks_divergence_only(self, scripted_source, cancel):
        source = scripted_source([100, -250_000, 7])
        _, report, out = _run(source, cancel, margin=0)
        
        assert out == ""
        assert report.max_divergence == 250_000
        
        text = report.format_text()
        assert "Number of overflows" not in text
        assert "Maximum unsynchronized time" not in text
        assert "overflows" not in report.to_dict()
    
    def test_equal_to_margin_is_overflow(self, scripted_source, cancel):
        source = scripted_source([500, 499, -500, -499])
        _, report, out = _run(source, cancel, margin=500)
        
        assert report.overflows == 2
        assert [line.split("offset: ")[1].strip() for line in out.splitlines()] == ["500", "-500"]


class TestConfiguration:
    """Test capability checks and parameter setup."""
    
    def test_assert_edge_enabled(self, scripted_source, cancel):
        from pps_watch.interfaces.pps_api import CaptureEdge, PPS_CAPTUREASSERT
        
        source = scripted_source([1])
        _run(source, cancel, edge=CaptureEdge.ASSERT)
        assert source.params.mode & PPS_CAPTUREASSERT
    
    def test_missing_edge_capability(self, scripted_source, cancel):
        from pps_watch.errors import PPSConfigError
        from pps_watch.interfaces.pps_api import CaptureEdge, PPS_CANWAIT, PPS_CAPTUREASSERT
        
        source = scripted_source([1], capabilities=PPS_CAPTUREASSERT | PPS_CANWAIT)
        with pytest.raises(PPSConfigError, match="selected mode not supported"):
            _run(source, cancel, edge=CaptureEdge.CLEAR)
        assert source.fetch_calls == 0
        assert source.closed
    
    def test_set_params_failure(self, scripted_source, cancel):
        from pps_watch.errors import PPSConfigError
        
        source = scripted_source([1], fail_set_params=PermissionError(1, "Operation not permitted"))
        with pytest.raises(PPSConfigError) as exc_info:
            _run(source, cancel)
        
        assert "/dev/pps-test" in str(exc_info.value)
        assert "cannot set parameters" in str(exc_info.value)
        assert source.closed
    
    def test_offset_compensation(self, scripted_source, cancel):
        from pps_watch.interfaces.pps_api import CaptureEdge, PPS_OFFSETASSERT
        
        source = scripted_source([1])
        _run(source, cancel, edge=CaptureEdge.ASSERT, offset_ns=675)
        
        assert source.params.mode & PPS_OFFSETASSERT
        assert source.params.assert_offset_ns == 675
    
    def test_offset_compensation_needs_capability(self, scripted_source, cancel):
        from pps_watch.errors import PPSConfigError
        from pps_watch.interfaces.pps_api import PPS_CANWAIT, PPS_CAPTURECLEAR
        
        source = scripted_source([1], capabilities=PPS_CAPTURECLEAR | PPS_CANWAIT)
        with pytest.raises(PPSConfigError, match="offset compensation"):
            _run(source, cancel, offset_ns=675)
    
    def test_polling_without_canwait(self, scripted_source, cancel):
        from pps_watch.interfaces.pps_api import PPS_CAPTURECLEAR
        
        source = scripted_source([10, 20, 30], capabilities=PPS_CAPTURECLEAR)
        loop, report, _ = _run(source, cancel, poll_interval=0.0)
        
        assert loop.can_wait is False
        assert report.total == 3
    
    def test_cancel_while_waiting_to_poll(self, scripted_source, cancel):
        """Cancellation during the poll interval ends the run without fetching."""
        import time
        from pps_watch.interfaces.pps_api import PPS_CAPTURECLEAR
        
        source = scripted_source([10], capabilities=PPS_CAPTURECLEAR)
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            _, report, _ = _run(source, cancel, poll_interval=30.0)
        finally:
            timer.cancel()
        
        assert time.monotonic() - started < 10.0
        assert source.fetch_calls == 0
        assert source.closed
        assert report.total == 0
    
    def test_get_params_failure(self, scripted_source, cancel):
        from pps_watch.errors import PPSConfigError
        
        source = scripted_source([1], fail_get_params=OSError(22, "Invalid argument"))
        with pytest.raises(PPSConfigError, match=r"cannot get parameters \(Invalid argument\)"):
            _run(source, cancel)
        assert source.fetch_calls == 0
        assert source.closed
    
    def test_invalid_config_values(self):
        from pps_watch.engine.acquisition import WatchConfig
        
        with pytest.raises(ValueError):
            WatchConfig(margin=-1)
        with pytest.raises(ValueError):
            WatchConfig(timeout=0)


class TestRunSources:
    """Test running several independent sources."""
    
    def test_failure_isolated(self, cancel):
        from conftest import ScriptedSource
        from pps_watch.engine.acquisition import AcquisitionLoop, WatchConfig, run_sources
        from pps_watch.errors import PPSFetchError
        from pps_watch.interfaces.watch_report import WatchReport
        
        # Sources signal exhaustion on their own token; only the timer stops the loops
        spare = threading.Event()
        healthy = ScriptedSource("/dev/pps0", [10] * 50 + [TimeoutError(110, "t")] * 10000, spare)
        broken = ScriptedSource("/dev/pps1", [5, OSError(5, "Input/output error")], spare)
        
        loops = [
            AcquisitionLoop(healthy, WatchConfig(margin=100), cancel=cancel, out=io.StringIO()),
            AcquisitionLoop(broken, WatchConfig(margin=100), cancel=cancel, out=io.StringIO()),
        ]
        
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            results = run_sources(loops, cancel, join_interval=0.05)
        finally:
            timer.cancel()
        
        assert list(results) == ["/dev/pps0", "/dev/pps1"]
        assert isinstance(results["/dev/pps0"], WatchReport)
        assert results["/dev/pps0"].total == 50
        assert isinstance(results["/dev/pps1"], PPSFetchError)
        assert healthy.closed and broken.closed
    
    def test_single_source_runs_inline(self, scripted_source, cancel):
        from pps_watch.engine.acquisition import AcquisitionLoop, run_sources
        
        loop = AcquisitionLoop(scripted_source([1, 2, 3]), cancel=cancel, out=io.StringIO())
        results = run_sources([loop], cancel)
        
        assert results["/dev/pps-test"].total == 3
    
    def test_duplicate_devices_rejected(self, cancel):
        """Two loops on one device would share a result slot; refuse them."""
        from conftest import ScriptedSource
        from pps_watch.engine.acquisition import AcquisitionLoop, run_sources
        
        spare = threading.Event()
        loops = [
            AcquisitionLoop(ScriptedSource("/dev/pps0", [1, 2, 3], spare), cancel=cancel),
            AcquisitionLoop(ScriptedSource("/dev/pps0", [1] * 7, spare), cancel=cancel),
        ]
        
        with pytest.raises(ValueError, match="/dev/pps0"):
            run_sources(loops, cancel)
        assert not any(loop.source.opened for loop in loops)
