"""Tests for posting streams with requests and the upload CLI, using fake sessions."""

from pathlib import Path
from typing import Any

import pytest
import requests

from mpstream import Part, Stream, make_string_part, string_part
import mpstream.upload as upload


class FakeSession:
    """Records the request and drains the body the way a transport would."""

    def __init__(self, status_code: int = 200, error: Exception | None = None):
        self.status_code = status_code
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def post(self, url, data=None, headers=None, timeout=None):
        if self.error is not None:
            raise self.error
        body = bytearray()
        while True:
            chunk = data.read(8192)
            if not chunk:
                break
            body += chunk
        self.calls.append({"url": url, "data": data, "body": bytes(body), "headers": headers, "timeout": timeout, "length": len(data)})
        response = requests.Response()
        response.status_code = self.status_code
        return response


class TrackingBody:
    def __init__(self, data: bytes):
        self._data = data
        self._read = False
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        if self._read:
            return b""
        self._read = True
        return self._data

    def close(self):
        self.closed = True


class ClosingFailsBody:
    def __init__(self, data: bytes, error: Exception):
        self._data = data
        self._read = False
        self._error = error
        self.close_calls = 0

    def read(self, size: int = -1) -> bytes:
        if self._read:
            return b""
        self._read = True
        return self._data

    def close(self):
        self.close_calls += 1
        raise self._error


def test_post_stream_sends_headers_and_body():
    session = FakeSession()
    stream = Stream([make_string_part("foo", "fux")], boundary="bnd")

    response = upload.post_stream("https://example.com/upload?sig=secret", stream, timeout=5, session=session)

    assert response.status_code == 200
    call = session.calls[0]
    assert call["headers"] == {
        "Content-Type": "multipart/form-data; boundary=bnd",
        "Content-Length": str(stream.content_length),
    }
    assert len(call["body"]) == stream.content_length
    assert call["length"] == stream.content_length
    assert call["timeout"] == 5
    assert stream.closed


def test_post_stream_closes_parts_after_upload():
    body = TrackingBody(b"abc")
    part = Part(headers={"Content-Disposition": 'form-data; name="t"'}, size=3, body=body)
    upload.post_stream("https://example.com", Stream([part], boundary="b"), session=FakeSession())
    assert body.closed


def test_post_stream_timeout_becomes_runtime_error():
    session = FakeSession(error=requests.Timeout("slow"))
    stream = Stream([make_string_part("foo", "fux")], boundary="bnd")
    with pytest.raises(RuntimeError) as excinfo:
        upload.post_stream("https://example.com", stream, timeout=1, session=session)
    assert "timeout" in str(excinfo.value)
    assert stream.closed


def test_post_stream_request_error_is_chained():
    error = requests.ConnectionError("refused")
    session = FakeSession(error=error)
    stream = Stream([make_string_part("foo", "fux")], boundary="bnd")
    with pytest.raises(RuntimeError) as excinfo:
        upload.post_stream("https://example.com", stream, session=session)
    assert excinfo.value.__cause__ is error


def test_stream_post_parts_builds_and_posts():
    session = FakeSession()
    upload.stream_post_parts(
        "https://example.com",
        [string_part("foo", "fux"), string_part("bar", "yolo")],
        boundary="xxxtestboundaryxxx",
        session=session,
    )
    assert session.calls[0]["body"] == (
        b"--xxxtestboundaryxxx\r\n"
        b'Content-Disposition: form-data; name="foo"\r\n\r\nfux\r\n'
        b"--xxxtestboundaryxxx\r\n"
        b'Content-Disposition: form-data; name="bar"\r\n\r\nyolo\r\n'
        b"--xxxtestboundaryxxx--\r\n"
    )


def test_parse_builders_keeps_command_line_order(tmp_path: Path):
    path = tmp_path / "a.txt"
    path.write_text("file body", encoding="utf-8")
    parser = upload.build_parser()
    args = parser.parse_args([
        "https://example.com",
        "--field", "first=1",
        "--file", f"doc={path}",
        "--json", 'meta={"a": 1}',
        "--json", "plain=not json",
    ])

    parts = [build() for build in upload.parse_builders(args)]
    assert [p.headers["Content-Disposition"][0] for p in parts] == [
        'form-data; name="first"',
        'form-data; name="doc"; filename="a.txt"',
        'form-data; name="meta"',
        'form-data; name="plain"',
    ]
    assert parts[2].body.read() == b'{"a":1}'
    assert parts[3].body.read() == b'"not json"'


def test_parser_rejects_malformed_pairs():
    parser = upload.build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["https://example.com", "--field", "novalue"])


def test_main_posts_and_exits_zero(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr(requests, "post", session.post)
    monkeypatch.delenv("UPLOAD_TIMEOUT", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        upload.main(["https://example.com/up", "--field", "foo=fux", "--boundary", "bnd"])

    assert excinfo.value.code == 0
    assert session.calls[0]["url"] == "https://example.com/up"
    assert session.calls[0]["body"].startswith(b"--bnd\r\n")


def test_main_reads_url_from_environment(monkeypatch):
    session = FakeSession(status_code=500)
    monkeypatch.setattr(requests, "post", session.post)
    monkeypatch.setenv("UPLOAD_URL", "https://env.example.com")
    monkeypatch.setenv("UPLOAD_TIMEOUT", "12.5")

    with pytest.raises(SystemExit) as excinfo:
        upload.main(["--field", "foo=fux"])

    assert excinfo.value.code == 1
    assert session.calls[0]["url"] == "https://env.example.com"
    assert session.calls[0]["timeout"] == 12.5


def test_main_without_url_exits_one(monkeypatch):
    monkeypatch.delenv("UPLOAD_URL", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        upload.main(["--field", "foo=fux"])
    assert excinfo.value.code == 1


def test_main_without_parts_exits_one():
    with pytest.raises(SystemExit) as excinfo:
        upload.main(["https://example.com"])
    assert excinfo.value.code == 1


class RecordingProgressBar:
    """Stands in for rsxml's ProgressBar and keeps every update."""

    def __init__(self, total, width, text, byte_format=False):
        self.total = total
        self.text = text
        self.byte_format = byte_format
        self.updates: list[int] = []

    def update(self, progress):
        self.updates.append(progress)


def test_post_stream_close_failure_keeps_response():
    """a body that fails to close must not hide a successful upload"""
    body = ClosingFailsBody(b"abc", OSError("close failed"))
    part = Part(headers={"Content-Disposition": 'form-data; name="t"'}, size=3, body=body)
    stream = Stream([part], boundary="b")

    response = upload.post_stream("https://example.com", stream, session=FakeSession())

    assert response.status_code == 200
    assert body.close_calls == 1
    assert stream.closed


def test_post_stream_close_failure_keeps_timeout_error():
    body = ClosingFailsBody(b"abc", OSError("close failed"))
    part = Part(headers={"Content-Disposition": 'form-data; name="t"'}, size=3, body=body)
    stream = Stream([part], boundary="b")

    with pytest.raises(RuntimeError) as excinfo:
        upload.post_stream("https://example.com", stream, timeout=1, session=FakeSession(error=requests.Timeout("slow")))

    assert "timeout" in str(excinfo.value)
    assert body.close_calls == 1


def test_post_stream_with_progress_sends_everything():
    session = FakeSession()
    stream = Stream([make_string_part("foo", "fux"), make_string_part("bar", "yolo")], boundary="bnd")

    upload.post_stream("https://example.com", stream, session=session, show_progress=True)

    call = session.calls[0]
    assert isinstance(call["data"], upload.ProgressStream)
    assert len(call["body"]) == stream.content_length
    assert call["length"] == stream.content_length
    assert call["data"].progress == stream.content_length


def test_progress_stream_forwards_and_reports(monkeypatch):
    monkeypatch.setattr(upload, "ProgressBar", RecordingProgressBar)
    stream = Stream([make_string_part("foo", "fux")], boundary="bnd")
    progress = upload.ProgressStream(stream)

    assert len(progress) == stream.content_length
    assert progress.prg.total == stream.content_length
    assert progress.prg.byte_format

    first = progress.read(4)
    assert progress.tell() == 4
    rest = b"".join(progress)

    assert first + rest == Stream([make_string_part("foo", "fux")], boundary="bnd").read()
    assert progress.tell() == stream.content_length
    assert progress.progress == stream.content_length
    assert progress.prg.updates[0] == 4
    assert progress.prg.updates[-1] == stream.content_length
