"""Output adapters - atomic JSON report file."""

from .report_writer import ReportWriter

__all__ = ['ReportWriter']
