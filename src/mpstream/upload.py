"""POST multipart streams over HTTP and the ``mpstream-upload`` command line tool."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from typing import Iterator, List, Optional, Sequence

import requests
from rsxml import Logger, ProgressBar, dotenv

from .builders import PartBuilder, build_smart, file_part, json_part, string_part
from .stream import DEFAULT_CHUNK_SIZE, Stream

# Disable all the weird terminal noise from urllib3
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("urllib3").propagate = False


class ProgressStream:
    """Wraps a Stream and reports every read to an rsxml ProgressBar."""

    def __init__(self, stream: Stream, text: str = 'Upload Progress'):
        self._stream = stream
        self.progress = 0
        self.prg = ProgressBar(stream.content_length, 50, text, byte_format=True)

    def __len__(self) -> int:
        return len(self._stream)

    def tell(self) -> int:
        return self._stream.tell()

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.progress += len(chunk)
        self.prg.update(self.progress)
        return chunk

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk


def post_stream(
    url: str,
    stream: Stream,
    timeout: int | float | None = None,
    session: Optional[requests.Session] = None,
    show_progress: bool = False,
) -> requests.Response:
    """ POST ``stream`` to ``url`` and close it afterwards

    Errors from closing the part bodies are logged as warnings so they never
    hide the response or the request error.

    Args:
        url (str): the target URL
        stream (Stream): the multipart body
        timeout (int | float, optional): request timeout in seconds
        session (requests.Session, optional): session to send with. ``requests.post`` is used when omitted.
        show_progress (bool, optional): draw a progress bar while uploading. Defaults to False.

    Raises:
        RuntimeError: if the request times out or fails at the transport level

    Returns:
        requests.Response: the server response, status not checked
    """
    log = Logger("Multipart Upload")
    data = ProgressStream(stream) if show_progress else stream
    sender = session.post if session is not None else requests.post

    log.info(f"Uploading {stream.content_length:,} bytes -> {url.split('?')[0]}")
    try:
        response = sender(url, data=data, headers=stream.headers(), timeout=timeout)
    except requests.Timeout:
        log.error(f"Request timed out after {timeout} seconds: {url}")
        raise RuntimeError(f"Failed to upload to {url} due to timeout") from None
    except requests.RequestException as exc:
        log.error(f"Error occurred while uploading to {url}: {exc}")
        raise RuntimeError(f"Failed to upload to {url}") from exc
    finally:
        # A close failure must not replace the response or the request error
        _close_logged(stream, log)
    return response


def _close_logged(stream: Stream, log: Logger) -> None:
    try:
        stream.close()
    except Exception as exc:
        log.warning(f"Error closing upload stream: {exc}")


def stream_post_parts(
    url: str,
    builders: Sequence[PartBuilder],
    boundary: Optional[str] = None,
    timeout: int | float | None = None,
    session: Optional[requests.Session] = None,
    show_progress: bool = False,
) -> requests.Response:
    """Build a stream from ``builders`` and POST it to ``url``."""

    stream = build_smart(*builders, boundary=boundary)
    return post_stream(url, stream, timeout=timeout, session=session, show_progress=show_progress)


def parse_builders(args: argparse.Namespace) -> List[PartBuilder]:
    """Turn ``--field``/``--json``/``--file`` arguments into builders, in command line order."""

    builders: List[PartBuilder] = []
    for kind, name, value in args.parts or []:
        if kind == "field":
            builders.append(string_part(name, value))
        elif kind == "json":
            builders.append(json_part(name, _json_value(value)))
        else:
            builders.append(file_part(name, value))
    return builders


def _json_value(raw: str):
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class _PartAction(argparse.Action):
    def __call__(self, parser, namespace, values, option_string=None):
        name, sep, value = values.partition("=")
        if not sep or not name:
            parser.error(f"{option_string} expects NAME=VALUE, got '{values}'")
        parts = getattr(namespace, self.dest, None) or []
        parts.append((self.const, name, value))
        setattr(namespace, self.dest, parts)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream a multipart/form-data POST without buffering files.")
    parser.add_argument("url", nargs="?", help="Target URL (falls back to UPLOAD_URL in environment).", type=str)
    parser.add_argument("--field", dest="parts", action=_PartAction, const="field", metavar="NAME=VALUE",
                        help="Add a text field. May be repeated.")
    parser.add_argument("--json", dest="parts", action=_PartAction, const="json", metavar="NAME=JSON",
                        help="Add a field whose value is encoded as JSON. May be repeated.")
    parser.add_argument("--file", dest="parts", action=_PartAction, const="file", metavar="NAME=PATH",
                        help="Add a file. May be repeated.")
    parser.add_argument("--boundary", help="Boundary (falls back to UPLOAD_BOUNDARY, otherwise random).", type=str)
    parser.add_argument("--timeout", help="Timeout in seconds (falls back to UPLOAD_TIMEOUT).", type=float)
    parser.add_argument("--log-path", help="Write a log file here.", type=str)
    parser.add_argument("--progress", help="Show a progress bar.", action="store_true", default=False)
    parser.add_argument("--verbose", help="Log at debug level to --log-path.", action="store_true", default=False)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for streaming uploads."""

    parser = build_parser()
    if argv is None:
        args = dotenv.parse_args_env(parser)
    else:
        args = parser.parse_args(argv)

    url = args.url if args.url else os.getenv("UPLOAD_URL")
    boundary = args.boundary if args.boundary else os.getenv("UPLOAD_BOUNDARY")
    timeout = args.timeout if args.timeout is not None else os.getenv("UPLOAD_TIMEOUT")

    if not url:
        print("No URL supplied or found in environment as UPLOAD_URL")
        sys.exit(1)
    if not args.parts:
        print("Nothing to upload. Use --field, --json or --file")
        sys.exit(1)
    if timeout is not None:
        try:
            timeout = float(timeout)
        except ValueError:
            print(f"Invalid timeout: {timeout}")
            sys.exit(1)

    log = Logger("Upload Setup")
    if args.log_path:
        log.setup(log_path=args.log_path, log_level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        response = stream_post_parts(
            url,
            parse_builders(args),
            boundary=boundary,
            timeout=timeout,
            show_progress=args.progress,
        )
        log.info(f"Server responded {response.status_code}")
        response.raise_for_status()
        sys.exit(0)
    except Exception as exc:  # pragma: no cover - CLI safety net
        log.error(exc)
        traceback.print_exc(file=sys.stdout)
        sys.exit(1)


if __name__ == "__main__":
    main()
