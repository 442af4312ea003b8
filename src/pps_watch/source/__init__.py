"""PPS sources - Linux PPS character device and a simulated pulse generator."""

from .base import PPSSource
from .pps_device import PPSDevice
from .simulated import SimulatedPPSSource

__all__ = ['PPSSource', 'PPSDevice', 'SimulatedPPSSource']
