"""Filesystem helpers for file backed parts."""

from __future__ import annotations

import mimetypes
import os

from pint import UnitRegistry

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_UNITS = UnitRegistry()


def format_size(size: int) -> str:
    """ Format a byte count for log output, e.g. ``1.50 MB``

    Args:
        size (int): number of bytes

    Returns:
        str: compact human readable size
    """
    size_units = size * _UNITS.byte
    compact_size = size_units.to_compact()
    return f"{compact_size:.2f~#P}"


def guess_content_type(filename: str) -> str:
    """Guess a Content-Type from the file extension, falling back to application/octet-stream."""

    return mimetypes.guess_type(os.path.basename(filename))[0] or DEFAULT_CONTENT_TYPE
