"""Descrambled DVD reads through libdvdcss.

libdvdcss is loaded with ctypes at runtime. Its absence is not an error for
discvault as a whole: ``load_decryptor`` returns ``None`` and protected discs
then fail permanently instead of being retried.
"""

import ctypes
import ctypes.util
import io
import logging

from discvault.config import ArchiverConfig
from discvault.error_handling import DecryptionError

logger = logging.getLogger(__name__)

DVDCSS_BLOCK_SIZE = 2048
DVDCSS_NOFLAGS = 0
DVDCSS_READ_DECRYPT = 1 << 0
DVDCSS_SEEK_MPEG = 1 << 0


class DvdCssStream(io.RawIOBase):
    """Sequential, block-aligned reader over a libdvdcss handle."""

    def __init__(self, lib: ctypes.CDLL, handle: int, device: str):
        super().__init__()
        self._lib = lib
        self._handle = handle
        self._device = device
        self._block = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        blocks = len(view) // DVDCSS_BLOCK_SIZE
        if blocks == 0:
            msg = f"Reads must be at least {DVDCSS_BLOCK_SIZE} bytes"
            raise ValueError(msg)

        # Seeking with SEEK_MPEG makes libdvdcss pick up the title key for
        # whichever title this block belongs to.
        position = self._lib.dvdcss_seek(self._handle, self._block, DVDCSS_SEEK_MPEG)
        if position < 0:
            raise OSError(f"dvdcss_seek failed on {self._device}: {self._error()}")

        chunk = (ctypes.c_char * (blocks * DVDCSS_BLOCK_SIZE)).from_buffer(view)
        read = self._lib.dvdcss_read(self._handle, chunk, blocks, DVDCSS_READ_DECRYPT)
        if read < 0:
            raise OSError(f"dvdcss_read failed on {self._device}: {self._error()}")

        self._block += read
        return read * DVDCSS_BLOCK_SIZE

    def close(self) -> None:
        if self._handle:
            self._lib.dvdcss_close(self._handle)
            self._handle = 0
        super().close()

    def _error(self) -> str:
        message = self._lib.dvdcss_error(self._handle)
        return message.decode(errors="replace") if message else "unknown error"


class DvdCssDecryptor:
    """Opens CSS-protected DVDs for descrambled reading."""

    def __init__(self, library: str = "libdvdcss.so.2"):
        path = ctypes.util.find_library("dvdcss") if library == "dvdcss" else library
        if not path:
            msg = "libdvdcss is not installed"
            raise DecryptionError(msg, recoverable=False)

        try:
            self._lib = ctypes.CDLL(path)
        except OSError as e:
            msg = f"Cannot load {path}"
            raise DecryptionError(msg, recoverable=False, original_error=e) from e

        self._lib.dvdcss_open.argtypes = [ctypes.c_char_p]
        self._lib.dvdcss_open.restype = ctypes.c_void_p
        self._lib.dvdcss_close.argtypes = [ctypes.c_void_p]
        self._lib.dvdcss_close.restype = ctypes.c_int
        self._lib.dvdcss_seek.argtypes = [ctypes.c_void_p, ctypes.c_int, ctypes.c_int]
        self._lib.dvdcss_seek.restype = ctypes.c_int
        self._lib.dvdcss_read.argtypes = [
            ctypes.c_void_p,
            ctypes.c_void_p,
            ctypes.c_int,
            ctypes.c_int,
        ]
        self._lib.dvdcss_read.restype = ctypes.c_int
        self._lib.dvdcss_error.argtypes = [ctypes.c_void_p]
        self._lib.dvdcss_error.restype = ctypes.c_char_p

    def open(self, device: str) -> DvdCssStream:
        handle = self._lib.dvdcss_open(device.encode())
        if not handle:
            msg = f"libdvdcss could not authenticate {device}"
            raise DecryptionError(
                msg,
                device=device,
                solution="Check the drive region setting or try another drive",
            )
        return DvdCssStream(self._lib, handle, device)


def load_decryptor(config: ArchiverConfig) -> DvdCssDecryptor | None:
    """Load the configured decryption library, or None when unavailable."""
    if not config.dvdcss_library:
        logger.info("Decryption disabled - protected DVDs will be rejected")
        return None

    try:
        return DvdCssDecryptor(config.dvdcss_library)
    except DecryptionError as e:
        logger.warning("%s - protected DVDs will be rejected", e.message)
        return None
