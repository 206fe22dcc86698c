"""Request intake and response output over connected socket pairs."""

from __future__ import annotations

import socket
from collections.abc import Iterator
from pathlib import Path

import pytest

from request import HTTPRequest
from response import HTTP_BADREQUEST, HTTP_OK, MIME_PLAINTEXT, Response
from socket_handler import (
    RequestFault,
    declared_content_length,
    read_request,
    remove_temp_files,
    send_error,
    write_response,
)
from stream_source import BytesStreamSource, IterableStreamSource

BOUNDARY = "----StreamServerBoundaryQk3c"


@pytest.fixture
def socket_pair() -> Iterator[tuple[socket.socket, socket.socket]]:
    server_side, client_side = socket.socketpair()
    server_side.settimeout(3.0)
    client_side.settimeout(3.0)
    try:
        yield server_side, client_side
    finally:
        server_side.close()
        client_side.close()


def _read_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class FlakySocket:
    """Accepts the first ``ok_writes`` sendall calls, then fails."""

    def __init__(self, ok_writes: int) -> None:
        self.ok_writes = ok_writes
        self.sent: list[bytes] = []
        self.closed = False

    def sendall(self, data: bytes | memoryview) -> None:
        if len(self.sent) >= self.ok_writes:
            raise BrokenPipeError("peer went away")
        self.sent.append(bytes(data))

    def close(self) -> None:
        self.closed = True


class TrackingSource(BytesStreamSource):
    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.closed = False

    def close(self) -> None:
        super().close()
        self.closed = True


def test_read_request_returns_none_when_peer_sends_nothing(socket_pair) -> None:
    server_side, client_side = socket_pair
    client_side.close()

    assert read_request(server_side) is None


def test_read_request_decodes_get(socket_pair) -> None:
    server_side, client_side = socket_pair
    client_side.sendall(b"GET /stream/song.mp3?quality=high HTTP/1.0\r\nRange: bytes=0-\r\n\r\n")

    request = read_request(server_side)

    assert isinstance(request, HTTPRequest)
    assert request.uri == "/stream/song.mp3"
    assert request.params == {"quality": "high"}
    assert request.headers == {"range": "bytes=0-"}


def test_read_request_decodes_urlencoded_post(socket_pair) -> None:
    server_side, client_side = socket_pair
    body = b"a=1&b=2"
    client_side.sendall(
        b"POST /form HTTP/1.0\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode("ascii")
        + b"\r\n"
        + body
    )

    request = read_request(server_side)

    assert isinstance(request, HTTPRequest)
    assert request.method == "POST"
    assert request.params == {"a": "1", "b": "2"}


def test_read_request_reads_body_sent_after_headers(socket_pair) -> None:
    server_side, client_side = socket_pair
    body = b"x" * 1500 + b"&name=late"
    client_side.sendall(
        b"POST /form HTTP/1.0\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode("ascii")
        + b"\r\n"
    )
    client_side.sendall(body)

    request = read_request(server_side)

    assert isinstance(request, HTTPRequest)
    assert request.params == {"name": "late"}


def test_overstated_content_length_stops_at_end_of_stream(socket_pair) -> None:
    server_side, client_side = socket_pair
    client_side.sendall(
        b"POST /form HTTP/1.0\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        b"Content-Length: 4096\r\n"
        b"\r\n"
        b"a=1"
    )
    client_side.shutdown(socket.SHUT_WR)

    request = read_request(server_side)

    assert isinstance(request, HTTPRequest)
    assert request.params == {"a": "1"}


def test_read_request_decodes_multipart_upload(socket_pair) -> None:
    server_side, client_side = socket_pair
    body = (
        f"--{BOUNDARY}\r\n"
        'Content-Disposition: form-data; name="foo"\r\n'
        "\r\n"
        "bar\r\n"
        f"--{BOUNDARY}\r\n"
        'Content-Disposition: form-data; name="upload"; filename="x.txt"\r\n'
        "Content-Type: text/plain\r\n"
        "\r\n"
        "hello\r\n"
        f"--{BOUNDARY}--\r\n"
    ).encode("ascii")
    client_side.sendall(
        b"POST /upload HTTP/1.0\r\n"
        + f"Content-Type: multipart/form-data; boundary={BOUNDARY}\r\n".encode("ascii")
        + f"Content-Length: {len(body)}\r\n".encode("ascii")
        + b"\r\n"
        + body
    )

    request = read_request(server_side)

    assert isinstance(request, HTTPRequest)
    try:
        assert request.params == {"foo": "bar", "upload": "x.txt"}
        assert Path(request.files["upload"]).read_bytes() == b"hello"
    finally:
        remove_temp_files(request.files)
    assert not Path(request.files["upload"]).exists()


def test_malformed_request_line_is_a_bad_request_fault(socket_pair) -> None:
    server_side, client_side = socket_pair
    client_side.sendall(b"   \r\n\r\n")

    outcome = read_request(server_side)

    assert isinstance(outcome, RequestFault)
    assert outcome.status == HTTP_BADREQUEST
    assert "Syntax error" in outcome.message


def test_multipart_without_boundary_is_a_bad_request_fault(socket_pair) -> None:
    server_side, client_side = socket_pair
    client_side.sendall(
        b"POST /upload HTTP/1.0\r\n"
        b"Content-Type: multipart/form-data\r\n"
        b"Content-Length: 2\r\n"
        b"\r\n"
        b"--"
    )

    outcome = read_request(server_side)

    assert isinstance(outcome, RequestFault)
    assert outcome.status == HTTP_BADREQUEST


def test_declared_content_length_falls_back_to_unbounded() -> None:
    assert declared_content_length({"content-length": "12"}) == 12
    assert declared_content_length({"content-length": "twelve"}) == 0x7FFFFFFFFFFFFFFF
    assert declared_content_length({"content-length": "-5"}) == 0x7FFFFFFFFFFFFFFF
    assert declared_content_length({}) == 0x7FFFFFFFFFFFFFFF


def test_write_response_streams_body_source(socket_pair) -> None:
    server_side, client_side = socket_pair
    response = Response(
        status=HTTP_OK,
        mime_type="audio/mpeg",
        data=IterableStreamSource([b"frame-1|", b"frame-2|", b"frame-3"]),
    )
    response.add_header("Accept-Ranges", "bytes")

    bytes_sent = write_response(server_side, response, write_buffer_size=5)
    server_side.close()
    raw = _read_all(client_side)

    head, body = raw.split(b"\r\n\r\n", 1)
    assert head.startswith(b"HTTP/1.0 200 OK\r\n")
    assert b"Content-Type: audio/mpeg" in head
    assert b"Accept-Ranges: bytes" in head
    assert body == b"frame-1|frame-2|frame-3"
    assert bytes_sent == len(raw)


def test_write_failure_closes_connection_and_source() -> None:
    connection = FlakySocket(ok_writes=1)
    source = TrackingSource(b"payload that never arrives")

    bytes_sent = write_response(connection, Response(status=HTTP_OK, data=source))

    assert connection.closed
    assert source.closed
    assert bytes_sent == len(connection.sent[0])


def test_failing_body_source_truncates_response(socket_pair) -> None:
    server_side, client_side = socket_pair

    def chunks():
        yield b"first|"
        raise RuntimeError("remote reader lost its session")

    bytes_sent = write_response(
        server_side,
        Response(status=HTTP_OK, data=IterableStreamSource(chunks())),
    )
    raw = _read_all(client_side)

    assert raw.endswith(b"\r\n\r\nfirst|")
    assert bytes_sent == len(raw)
    assert server_side.fileno() == -1


def test_send_error_writes_bodiless_plain_text_response(socket_pair) -> None:
    server_side, client_side = socket_pair

    send_error(server_side, HTTP_BADREQUEST, "BAD REQUEST: test")
    server_side.close()
    raw = _read_all(client_side)

    assert raw.startswith(b"HTTP/1.0 400 Bad Request\r\n")
    assert f"Content-Type: {MIME_PLAINTEXT}\r\n".encode("ascii") in raw
    assert raw.endswith(b"\r\n\r\n")
    assert raw.count(b"HTTP/1.0") == 1
