"""Raw block-device access for unprotected discs."""

from typing import BinaryIO


def open_raw_device(device: str) -> BinaryIO:
    """Open a drive for unbuffered sequential reading."""
    return open(device, "rb", buffering=0)
