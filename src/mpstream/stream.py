"""Streaming multipart/form-data encoder with a precomputed Content-Length."""

from __future__ import annotations

import errno
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from rsxml import Logger

from .boundary import random_boundary, render_delimiters, validate_boundary
from .errors import EmptyPartsError, PartSizeError, SizeMismatchError, StreamCloseError
from .parts import Part

DEFAULT_CHUNK_SIZE = 64 * 1024


class ReadState(Enum):
    """Section of the body the encoder is currently copying out."""
    DELIMITER = "delimiter"
    HEADER = "header"
    BODY = "body"
    TRAILER = "trailer"
    DONE = "done"


def compute_content_length(boundary: str, parts: Sequence[Part]) -> int:
    """ Total number of bytes the encoder will produce for ``parts``

    Args:
        boundary (str): a validated boundary
        parts (Sequence[Part]): the parts in output order

    Raises:
        PartSizeError: if a part does not declare a non-negative size

    Returns:
        int: the exact body length
    """
    # Delimiter size averages out to six, and there are len(parts) + 1 delimiters.
    # head(4):   --<boundary>CRLF
    # middle(6): CRLF--<boundary>CRLF
    # close(8):  CRLF--<boundary>--CRLF
    size = (len(parts) + 1) * (len(boundary) + 6)
    for index, part in enumerate(parts):
        if part.size is None or part.size < 0:
            raise PartSizeError(f"mpstream: part[{index}] does not declare its size")
        size += len(part.header_block()) + part.size
    return size


def close_parts(parts: Iterable[Part]) -> None:
    """ Close every part body, even if some of them fail

    Raises:
        Exception: the original error when exactly one part failed to close
        StreamCloseError: when more than one part failed to close
    """
    failures: List[Tuple[int, BaseException]] = []
    for index, part in enumerate(parts):
        try:
            part.close()
        except Exception as exc:
            failures.append((index, exc))
    if not failures:
        return
    if len(failures) == 1:
        raise failures[0][1]
    raise StreamCloseError(failures)


class Stream:
    """A multipart/form-data body served through ``readinto``/``read``.

    The whole length is computed before the first byte is produced, so the
    stream can be handed straight to ``requests`` as ``data=`` with a correct
    Content-Length. Each part body is read once, in order, and only when the
    encoder reaches it.

    A Stream is not thread safe; read it from one caller only.
    """

    def __init__(
        self,
        parts: Iterable[Part],
        boundary: Optional[str] = None,
        verify_sizes: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.log = Logger('Multipart Stream')
        parts = list(parts)
        if not parts:
            raise EmptyPartsError()
        if boundary is None:
            boundary = random_boundary()
        else:
            validate_boundary(boundary)

        self._boundary = boundary
        self._parts = parts
        self._content_length = compute_content_length(boundary, parts)
        self._delimiters = render_delimiters(boundary)
        self._verify_sizes = verify_sizes
        self._chunk_size = chunk_size

        # The first delimiter skips the leading CRLF of the middle form
        self._state = ReadState.DELIMITER
        self._index = 0
        self._offset = 2
        self._header: Optional[bytes] = None
        self._body_count = 0
        self._produced = 0
        self._pending_error: Optional[Exception] = None
        self._closed = False

        self.log.debug(f"Multipart stream: {len(parts)} part(s), content length {self._content_length:,} bytes")

    @property
    def boundary(self) -> str:
        return self._boundary

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self._boundary}"

    @property
    def content_length(self) -> int:
        return self._content_length

    @property
    def position(self) -> Tuple[ReadState, int, int]:
        """``(state, part index, offset)`` of the next byte to produce."""
        return self._state, self._index, self._offset

    @property
    def exhausted(self) -> bool:
        return self._state is ReadState.DONE

    @property
    def closed(self) -> bool:
        return self._closed

    def headers(self) -> dict:
        """HTTP headers describing this body."""
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self._content_length),
        }

    def readable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._produced

    def __len__(self) -> int:
        return self._content_length

    def readinto(self, buffer) -> int:
        """ Copy the next bytes of the body into ``buffer``

        Crosses delimiter, header and body boundaries within one call until the
        buffer is full or the body is complete.

        Args:
            buffer: any writable bytes-like object

        Raises:
            Exception: whatever a part body raises. If bytes were already copied in
                the same call they are returned first and the error is raised on
                the next call.
            BlockingIOError: a non-blocking body returned None before any byte was
                copied in this call. The cursor is unchanged, so the read can be retried.

        Returns:
            int: number of bytes copied, 0 once the closing delimiter has been emitted
        """
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error

        out = memoryview(buffer).cast("B")
        limit = len(out)
        n = 0
        while n < limit and self._state is not ReadState.DONE:
            if self._state is ReadState.DELIMITER:
                n += self._copy(out[n:], self._delimiters.middle)
                if self._offset == len(self._delimiters.middle):
                    self._advance(ReadState.HEADER)

            elif self._state is ReadState.HEADER:
                if self._header is None:
                    self._header = self._parts[self._index].header_block()
                n += self._copy(out[n:], self._header)
                if self._offset == len(self._header):
                    self._header = None
                    self._advance(ReadState.BODY)

            elif self._state is ReadState.BODY:
                try:
                    nn = self._read_body(out[n:])
                    if nn is None:
                        # non-blocking body with nothing available yet; no EOF
                        if n == 0:
                            raise BlockingIOError(errno.EAGAIN, f"mpstream: part[{self._index}] body has no data available")
                        break
                    if nn == 0:
                        self._finish_body()
                except Exception as exc:
                    if n == 0:
                        raise
                    self._pending_error = exc
                    break
                n += nn

            elif self._state is ReadState.TRAILER:
                n += self._copy(out[n:], self._delimiters.close)
                if self._offset == len(self._delimiters.close):
                    self._advance(ReadState.DONE)

        self._produced += n
        return n

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return b"".join(iter(self))
        buffer = bytearray(size)
        n = self.readinto(buffer)
        return bytes(buffer[:n])

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        """ Close every part body that can be closed

        Safe to call before the stream is fully read and more than once.

        Raises:
            Exception: the original error when exactly one part failed to close
            StreamCloseError: when several parts failed to close
        """
        self._closed = True
        close_parts(self._parts)

    def __enter__(self) -> 'Stream':
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    def __repr__(self):
        return (f"Stream(boundary='{self._boundary}', parts={len(self._parts)}, "
                f"content_length={self._content_length}, state={self._state.value})")

    def _copy(self, out: memoryview, source: bytes) -> int:
        nn = min(len(out), len(source) - self._offset)
        out[:nn] = source[self._offset:self._offset + nn]
        self._offset += nn
        return nn

    def _advance(self, state: ReadState) -> None:
        self._state = state
        self._offset = 0

    def _read_body(self, out: memoryview) -> Optional[int]:
        part = self._parts[self._index]
        data = part.body.read(len(out))
        if data is None:
            return None
        nn = len(data)
        out[:nn] = data
        self._body_count += nn
        if self._verify_sizes and self._body_count > part.size:
            raise SizeMismatchError(self._index, part.size, self._body_count)
        return nn

    def _finish_body(self) -> None:
        part = self._parts[self._index]
        if self._verify_sizes and self._body_count != part.size:
            raise SizeMismatchError(self._index, part.size, self._body_count)
        self._body_count = 0
        self._index += 1
        if self._index < len(self._parts):
            self._advance(ReadState.DELIMITER)
        else:
            self._advance(ReadState.TRAILER)
