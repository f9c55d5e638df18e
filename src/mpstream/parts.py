"""Parts: one form field or file inside a multipart/form-data body."""

from __future__ import annotations

import io
import json
import os
import stat
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Iterable, Mapping, Optional, Union

from requests.structures import CaseInsensitiveDict
from rsxml import Logger

from .errors import PartBuildError
from .file_utils import format_size, guess_content_type

HeaderValues = Union[str, bytes, Iterable[str]]

_QUOTE_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"'})


def escape_quotes(value: str) -> str:
    """Escape backslashes and double quotes for a quoted Content-Disposition parameter."""
    return value.translate(_QUOTE_ESCAPES)


def _header_value(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def make_headers(headers: Optional[Mapping[str, HeaderValues]] = None) -> CaseInsensitiveDict:
    """ Normalise a header mapping so every value is a list of strings

    Args:
        headers (Mapping[str, str | bytes | Iterable[str]], optional): header names to one or more values.
            bytes values are decoded as UTF-8

    Returns:
        CaseInsensitiveDict: ordered, case-insensitive mapping of name -> list of values
    """
    normalised = CaseInsensitiveDict()
    for name, values in (headers or {}).items():
        if isinstance(values, (str, bytes)):
            values = [values]
        normalised[name] = [_header_value(value) for value in values]
    return normalised


@dataclass
class Part:
    """A named content unit: headers, declared body size and a body source.

    ``body`` must yield exactly ``size`` bytes through ``read(n)`` and then ``b""``.
    The size is trusted; a mismatch corrupts the Content-Length of the stream.
    """
    headers: Mapping[str, HeaderValues]
    size: Optional[int]
    body: Any = field(repr=False)

    def __post_init__(self):
        self.headers = make_headers(self.headers)

    def header_block(self) -> bytes:
        """Render ``Name: value`` lines in insertion order followed by the blank line."""
        lines = []
        for name, values in self.headers.items():
            for value in values:
                lines.append(f"{name}: {value}\r\n")
        lines.append("\r\n")
        return "".join(lines).encode("utf-8")

    def close(self) -> None:
        closer = getattr(self.body, "close", None)
        if callable(closer):
            closer()


class LazyFile:
    """Read-only file handle that is only opened on the first read.

    Parts that are never read (for example after an earlier part failed) never
    hold a file descriptor.
    """

    def __init__(self, filename: str):
        self.filename = filename
        self._file: Optional[BinaryIO] = None

    @property
    def opened(self) -> bool:
        return self._file is not None

    def read(self, size: int = -1) -> bytes:
        if self._file is None:
            self._file = open(self.filename, "rb")
        return self._file.read(size)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()

    def __repr__(self):
        return f"LazyFile(filename='{self.filename}', opened={self.opened})"


def form_data_disposition(fieldname: str, filename: Optional[str] = None) -> str:
    disposition = f'form-data; name="{escape_quotes(fieldname)}"'
    if filename is not None:
        disposition += f'; filename="{escape_quotes(filename)}"'
    return disposition


def make_bytes_part(fieldname: str, body: bytes) -> Part:
    headers = make_headers({"Content-Disposition": form_data_disposition(fieldname)})
    return Part(headers=headers, size=len(body), body=io.BytesIO(body))


def make_string_part(fieldname: str, body: str) -> Part:
    return make_bytes_part(fieldname, body.encode("utf-8"))


def make_json_part(fieldname: str, value: Any) -> Part:
    """ Encode ``value`` as compact JSON and wrap it in a form field

    Args:
        fieldname (str): form field name
        value (Any): anything ``json.dumps`` accepts

    Raises:
        PartBuildError: if the value cannot be serialised

    Returns:
        Part: the encoded field
    """
    try:
        encoded = json.dumps(value, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise PartBuildError(f'error marshalling field "{fieldname}" to json: {exc}') from exc
    return make_bytes_part(fieldname, encoded)


def make_file_part(
    fieldname: str,
    path: str,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
) -> Part:
    """ Build a file part whose body is opened lazily on first read

    Args:
        fieldname (str): form field name
        path (str): path of the file on disk
        filename (str, optional): filename sent to the server. Defaults to the basename of ``path``.
        content_type (str, optional): Content-Type of the part. Guessed from the extension when omitted.

    Raises:
        PartBuildError: if the file cannot be stat'ed or is a directory

    Returns:
        Part: a part whose size comes from the filesystem
    """
    log = Logger("Multipart Part")
    try:
        stats = os.stat(path)
    except OSError as exc:
        raise PartBuildError(f"mpstream: cannot make file part for {path}: {exc}") from exc
    if stat.S_ISDIR(stats.st_mode):
        raise PartBuildError(f"mpstream: cannot make file part for directory {path}")

    if filename is None:
        filename = os.path.basename(path)
    headers = make_headers({
        "Content-Disposition": form_data_disposition(fieldname, filename),
        "Content-Type": content_type or guess_content_type(filename),
    })
    log.debug(f"File part '{fieldname}': {path} {format_size(stats.st_size)}")
    return Part(headers=headers, size=stats.st_size, body=LazyFile(path))
