"""Streaming multipart/form-data bodies with a Content-Length known up front."""

from .boundary import Delimiters, random_boundary, render_delimiters, validate_boundary
from .builders import PartBuilder, build_smart, bytes_part, file_part, json_part, string_part
from .errors import (
    BoundaryGenerationError,
    EmptyPartsError,
    InvalidBoundaryCharacterError,
    InvalidBoundaryError,
    InvalidBoundaryLengthError,
    MultipartStreamError,
    PartBuildError,
    PartSizeError,
    SizeMismatchError,
    StreamCloseError,
)
from .parts import (
    LazyFile,
    Part,
    escape_quotes,
    make_bytes_part,
    make_file_part,
    make_headers,
    make_json_part,
    make_string_part,
)
from .stream import ReadState, Stream, close_parts, compute_content_length

__all__ = [
    # encoder
    "Stream",
    "ReadState",
    "compute_content_length",
    "close_parts",
    # boundary
    "Delimiters",
    "random_boundary",
    "render_delimiters",
    "validate_boundary",
    # parts
    "Part",
    "LazyFile",
    "escape_quotes",
    "make_headers",
    "make_bytes_part",
    "make_string_part",
    "make_json_part",
    "make_file_part",
    # builders
    "PartBuilder",
    "build_smart",
    "string_part",
    "bytes_part",
    "json_part",
    "file_part",
    # errors
    "MultipartStreamError",
    "InvalidBoundaryError",
    "InvalidBoundaryLengthError",
    "InvalidBoundaryCharacterError",
    "BoundaryGenerationError",
    "EmptyPartsError",
    "PartSizeError",
    "PartBuildError",
    "SizeMismatchError",
    "StreamCloseError",
]
