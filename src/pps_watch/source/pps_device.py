"""
Linux PPS Character Device Driver

This module talks to the kernel PPS subsystem through the /dev/ppsN
character devices using the same ioctls as the RFC 2783 timepps.h
wrappers (time_pps_getcap, time_pps_getparams, time_pps_setparams,
time_pps_fetch).

Kernel Interface:
-----------------
From <linux/pps.h>:

    struct pps_ktime {
        __s64 sec;
        __s32 nsec;
        __u32 flags;            // PPS_TIME_INVALID = 1
    };

    struct pps_kinfo {
        __u32 assert_sequence;
        __u32 clear_sequence;
        struct pps_ktime assert_tu;
        struct pps_ktime clear_tu;
        int current_mode;
    };

    struct pps_fdata {
        struct pps_kinfo info;
        struct pps_ktime timeout;
    };

    struct pps_kparams {
        int api_version;
        int mode;
        struct pps_ktime assert_off_tu;
        struct pps_ktime clear_off_tu;
    };

    #define PPS_GETPARAMS  _IOR('p', 0xa1, struct pps_kparams *)
    #define PPS_SETPARAMS  _IOW('p', 0xa2, struct pps_kparams *)
    #define PPS_GETCAP     _IOR('p', 0xa3, int *)
    #define PPS_FETCH      _IOWR('p', 0xa4, struct pps_fdata *)

Note the ioctl numbers encode the size of a POINTER, not of the struct.
The _IOC layout used here is the generic one (x86, ARM, RISC-V).

Setting parameters requires CAP_SYS_TIME.
"""

import fcntl
import logging
import os
import struct
from typing import Optional

from ..errors import PPSConfigError
from ..interfaces.pps_api import NSEC_PER_SEC, PPSInfo, PPSParams, TimingEvent
from .base import PPSSource

logger = logging.getLogger(__name__)


# _IOC encoding (asm-generic/ioctl.h)
_IOC_NRSHIFT = 0
_IOC_TYPESHIFT = 8
_IOC_SIZESHIFT = 16
_IOC_DIRSHIFT = 30
_IOC_WRITE = 1
_IOC_READ = 2


def _ioc(direction: int, ioc_type: str, nr: int, size: int) -> int:
    return (
        (direction << _IOC_DIRSHIFT)
        | (ord(ioc_type) << _IOC_TYPESHIFT)
        | (nr << _IOC_NRSHIFT)
        | (size << _IOC_SIZESHIFT)
    )


_POINTER_SIZE = struct.calcsize('P')

PPS_GETPARAMS = _ioc(_IOC_READ, 'p', 0xa1, _POINTER_SIZE)
PPS_SETPARAMS = _ioc(_IOC_WRITE, 'p', 0xa2, _POINTER_SIZE)
PPS_GETCAP = _ioc(_IOC_READ, 'p', 0xa3, _POINTER_SIZE)
PPS_FETCH = _ioc(_IOC_READ | _IOC_WRITE, 'p', 0xa4, _POINTER_SIZE)

PPS_TIME_INVALID = 1 << 0

# Struct layouts (native alignment, 64-bit Linux)
KTIME_FMT = 'qiI'
KINFO_FMT = '@II' + KTIME_FMT + KTIME_FMT + 'i4x'   # trailing pad to 8-byte alignment
FDATA_FMT = KINFO_FMT + KTIME_FMT
KPARAMS_FMT = '@ii' + KTIME_FMT + KTIME_FMT

KINFO_SIZE = struct.calcsize(KINFO_FMT)      # 48
FDATA_SIZE = struct.calcsize(FDATA_FMT)      # 64
KPARAMS_SIZE = struct.calcsize(KPARAMS_FMT)  # 40


def pack_fetch_request(timeout: Optional[float]) -> bytearray:
    """Build a pps_fdata buffer with the timeout filled in."""
    buf = bytearray(FDATA_SIZE)
    if timeout is None:
        struct.pack_into(KTIME_FMT, buf, KINFO_SIZE, 0, 0, PPS_TIME_INVALID)
    else:
        # Rounding may reach a full second; carry it so nsec stays < 1e9
        sec, nsec = divmod(int(round(timeout * NSEC_PER_SEC)), NSEC_PER_SEC)
        struct.pack_into(KTIME_FMT, buf, KINFO_SIZE, sec, nsec, 0)
    return buf


def unpack_fetch_result(buf: bytes) -> PPSInfo:
    """Decode the pps_kinfo part of a pps_fdata buffer."""
    (
        assert_seq, clear_seq,
        assert_sec, assert_nsec, _assert_flags,
        clear_sec, clear_nsec, _clear_flags,
        current_mode,
    ) = struct.unpack_from(KINFO_FMT, buf, 0)
    
    return PPSInfo(
        assert_event=TimingEvent(seconds=assert_sec, nanoseconds=assert_nsec, sequence=assert_seq),
        clear_event=TimingEvent(seconds=clear_sec, nanoseconds=clear_nsec, sequence=clear_seq),
        current_mode=current_mode,
    )


def pack_params(params: PPSParams) -> bytearray:
    """Encode a pps_kparams buffer."""
    assert_sec, assert_nsec = divmod(params.assert_offset_ns, NSEC_PER_SEC)
    clear_sec, clear_nsec = divmod(params.clear_offset_ns, NSEC_PER_SEC)
    buf = bytearray(KPARAMS_SIZE)
    struct.pack_into(
        KPARAMS_FMT, buf, 0,
        params.api_version,
        params.mode,
        assert_sec, assert_nsec, 0,
        clear_sec, clear_nsec, 0,
    )
    return buf


def unpack_params(buf: bytes) -> PPSParams:
    (
        api_version, mode,
        assert_sec, assert_nsec, _assert_flags,
        clear_sec, clear_nsec, _clear_flags,
    ) = struct.unpack_from(KPARAMS_FMT, buf, 0)
    
    return PPSParams(
        api_version=api_version,
        mode=mode,
        assert_offset_ns=assert_sec * NSEC_PER_SEC + assert_nsec,
        clear_offset_ns=clear_sec * NSEC_PER_SEC + clear_nsec,
    )


class PPSDevice(PPSSource):
    """
    PPS source backed by a /dev/ppsN character device.
    
    Usage:
        with PPSDevice('/dev/pps0') as dev:
            caps = dev.get_capabilities()
            info = dev.fetch(timeout=3.0)
    """
    
    def __init__(self, device: str):
        super().__init__(device)
        self.fd: Optional[int] = None
    
    def open(self) -> None:
        if self.fd is not None:
            return
        try:
            self.fd = os.open(self.device, os.O_RDWR)
        except OSError as e:
            raise PPSConfigError(self.device, f"unable to open device ({e.strerror})") from e
        logger.debug(f"Opened {self.device} (fd={self.fd})")
    
    def _require_open(self) -> int:
        if self.fd is None:
            raise PPSConfigError(self.device, "device is not open")
        return self.fd
    
    def get_capabilities(self) -> int:
        buf = bytearray(struct.calcsize('i'))
        fcntl.ioctl(self._require_open(), PPS_GETCAP, buf, True)
        return struct.unpack('i', buf)[0]
    
    def get_params(self) -> PPSParams:
        buf = bytearray(KPARAMS_SIZE)
        fcntl.ioctl(self._require_open(), PPS_GETPARAMS, buf, True)
        return unpack_params(buf)
    
    def set_params(self, params: PPSParams) -> None:
        buf = pack_params(params)
        fcntl.ioctl(self._require_open(), PPS_SETPARAMS, buf, True)
    
    def fetch(self, timeout: Optional[float]) -> PPSInfo:
        # ETIMEDOUT and EINTR surface as TimeoutError and InterruptedError
        buf = pack_fetch_request(timeout)
        fcntl.ioctl(self._require_open(), PPS_FETCH, buf, True)
        return unpack_fetch_result(buf)
    
    def close(self) -> None:
        if self.fd is None:
            return
        try:
            os.close(self.fd)
            logger.debug(f"Closed {self.device}")
        finally:
            self.fd = None
