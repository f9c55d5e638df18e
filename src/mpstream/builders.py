"""Deferred part construction.

A builder is a zero-argument callable returning a :class:`Part`. Building is
deferred so that :func:`build_smart` can stop at the first failure and close
whatever it already opened.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from rsxml import Logger

from .errors import MultipartStreamError, PartBuildError
from .parts import Part, make_bytes_part, make_file_part, make_json_part, make_string_part
from .stream import Stream, close_parts

PartBuilder = Callable[[], Part]


def string_part(fieldname: str, value: str) -> PartBuilder:
    return lambda: make_string_part(fieldname, value)


def bytes_part(fieldname: str, value: bytes) -> PartBuilder:
    return lambda: make_bytes_part(fieldname, value)


def json_part(fieldname: str, value: Any) -> PartBuilder:
    return lambda: make_json_part(fieldname, value)


def file_part(
    fieldname: str,
    path: str,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
) -> PartBuilder:
    def _build() -> Part:
        try:
            return make_file_part(fieldname, path, filename=filename, content_type=content_type)
        except PartBuildError as exc:
            raise PartBuildError(f'error creating file part for field "{fieldname}": {exc}') from exc
    return _build


def _close_quietly(parts: List[Part], log: Logger) -> None:
    try:
        close_parts(parts)
    except Exception as exc:
        log.warning(f"Error closing parts after failed build: {exc}")


def build_smart(*builders: PartBuilder, boundary: Optional[str] = None, **stream_kwargs) -> Stream:
    """ Run every builder and wrap the resulting parts in a Stream

    If a builder or the stream construction fails, every part built so far is
    closed before the error is raised.

    Args:
        *builders (PartBuilder): part builders in output order
        boundary (str, optional): boundary to use. A random one is generated when omitted.
        **stream_kwargs: passed through to :class:`Stream`

    Raises:
        PartBuildError: if a builder fails
        MultipartStreamError: if the stream cannot be created (bad boundary, no parts)

    Returns:
        Stream: the encoder over the built parts
    """
    log = Logger("Multipart Builder")
    parts: List[Part] = []
    for index, build in enumerate(builders):
        try:
            parts.append(build())
        except Exception as exc:
            _close_quietly(parts, log)
            raise PartBuildError(f"mpstream: error building part[{index}]: {exc}") from exc

    try:
        return Stream(parts, boundary=boundary, **stream_kwargs)
    except MultipartStreamError:
        _close_quietly(parts, log)
        raise
