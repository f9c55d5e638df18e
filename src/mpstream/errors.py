"""Exceptions raised while building, reading and closing multipart streams."""

from __future__ import annotations

from typing import Iterator, List, Sequence, Tuple


class MultipartStreamError(Exception):
    """Base exception for everything raised by mpstream.

    Attributes:
        message -- explanation of the error
    """

    def __init__(self, message="mpstream encountered an error"):
        self.message = message
        super().__init__(self.message)


class InvalidBoundaryError(MultipartStreamError, ValueError):
    """The boundary does not satisfy rfc2046#section-5.1.1"""


class InvalidBoundaryLengthError(InvalidBoundaryError):
    def __init__(self, message="mpstream: invalid boundary length"):
        super().__init__(message)


class InvalidBoundaryCharacterError(InvalidBoundaryError):
    def __init__(self, message="mpstream: invalid boundary character"):
        super().__init__(message)


class BoundaryGenerationError(MultipartStreamError):
    """The random source could not produce a boundary."""


class EmptyPartsError(MultipartStreamError, ValueError):
    def __init__(self, message="mpstream: at least one part is required"):
        super().__init__(message)


class PartSizeError(MultipartStreamError, ValueError):
    """A part cannot report its size up front, so no Content-Length can be computed."""


class PartBuildError(MultipartStreamError):
    """A part could not be built (filesystem or json failure)."""


class SizeMismatchError(MultipartStreamError):
    """A body yielded a different number of bytes than it declared."""

    def __init__(self, index: int, declared: int, actual: int):
        self.index = index
        self.declared = declared
        self.actual = actual
        super().__init__(
            f"mpstream: part[{index}] declared {declared} bytes but "
            f"{'yielded at least' if actual > declared else 'ended after'} {actual}"
        )


class StreamCloseError(MultipartStreamError):
    """Raised when more than one part failed to close.

    Each failure is kept together with the index of the part it came from.
    """

    def __init__(self, failures: Sequence[Tuple[int, BaseException]]):
        self.failures: List[Tuple[int, BaseException]] = list(failures)
        details = ", ".join(f"[{index}]: {err}" for index, err in self.failures)
        super().__init__(
            f"mpstream: encountered {len(self.failures)} errors while closing parts: {details}"
        )

    @property
    def errors(self) -> List[BaseException]:
        return [err for _index, err in self.failures]

    def wrapped_errors(self) -> List[BaseException]:
        """Return the underlying close errors in part order."""
        return self.errors

    def __len__(self) -> int:
        return len(self.failures)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)
