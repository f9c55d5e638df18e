"""Boundary tokens and the three delimiter forms built from them."""

from __future__ import annotations

import os
import string
from typing import NamedTuple

from .errors import BoundaryGenerationError, InvalidBoundaryCharacterError, InvalidBoundaryLengthError

CRLF = "\r\n"
BOUNDARY_MAX_LENGTH = 69
RANDOM_BOUNDARY_BYTES = 30

# rfc2046#section-5.1.1 bcharsnospace
BOUNDARY_CHARS = frozenset(string.ascii_letters + string.digits + "'()+_,-./:=?")


class Delimiters(NamedTuple):
    """Rendered delimiters for one boundary.

    head(4):   --<boundary>CRLF
    middle(6): CRLF--<boundary>CRLF
    close(8):  CRLF--<boundary>--CRLF
    """
    open: bytes
    middle: bytes
    close: bytes


def validate_boundary(boundary: str) -> None:
    """ Check a boundary token against rfc2046#section-5.1.1

    Args:
        boundary (str): the token to check

    Raises:
        InvalidBoundaryLengthError: the token is empty or longer than 69 characters
        InvalidBoundaryCharacterError: the token contains a character outside the allowed set
    """
    if len(boundary) < 1 or len(boundary) > BOUNDARY_MAX_LENGTH:
        raise InvalidBoundaryLengthError()
    for char in boundary:
        if char not in BOUNDARY_CHARS:
            raise InvalidBoundaryCharacterError(f"mpstream: invalid boundary character {char!r}")


def random_boundary() -> str:
    """ Generate a 60 character hex boundary from the OS random source

    Raises:
        BoundaryGenerationError: when the random source fails

    Returns:
        str: a boundary that always passes validate_boundary
    """
    try:
        buffer = os.urandom(RANDOM_BOUNDARY_BYTES)
    except (NotImplementedError, OSError) as exc:
        raise BoundaryGenerationError(f"mpstream: could not generate boundary: {exc}") from exc
    return buffer.hex()


def render_delimiters(boundary: str) -> Delimiters:
    middle = f"{CRLF}--{boundary}{CRLF}".encode("ascii")
    return Delimiters(
        open=middle[2:],
        middle=middle,
        close=f"{CRLF}--{boundary}--{CRLF}".encode("ascii"),
    )
