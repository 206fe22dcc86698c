"""Low-level socket read/write: request intake and streamed response output."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path

from config import (
    BODY_READ_CHUNK_SIZE,
    HEADER_BUFFER_SIZE,
    UNBOUNDED_CONTENT_LENGTH,
    WRITE_BUFFER_SIZE,
)
from errors import HTTPRequestParseError
from multipart import decode_multipart, extract_boundary, is_multipart
from params import decode_params
from request import HTTPRequest, decode_header
from response import (
    HTTP_BADREQUEST,
    HTTP_INTERNALERROR,
    MIME_PLAINTEXT,
    STATUS_BY_CODE,
    Response,
    serialize_head,
)
from stream_source import opened
from utils import LineReader, find_header_end

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RequestFault:
    """A request that could not be decoded, with the status to report."""

    status: str
    message: str


def declared_content_length(headers: dict[str, str]) -> int:
    """Return the content-length, or the unbounded sentinel when absent or unparsable."""
    value = headers.get("content-length")
    if value is None:
        return UNBOUNDED_CONTENT_LENGTH
    try:
        length = int(value)
    except ValueError:
        return UNBOUNDED_CONTENT_LENGTH
    return length if length >= 0 else UNBOUNDED_CONTENT_LENGTH


def read_body(client_socket: socket.socket, initial: bytes, headers: dict[str, str]) -> bytes:
    """Assemble the request body from the initial read plus further socket reads.

    Body bytes already in ``initial`` count against the declared length. When
    nothing follows the header block and no length was declared, there is no
    body to wait for. Reading stops early when the peer closes its side.
    """
    remaining = declared_content_length(headers)
    body_start = find_header_end(initial)
    body = bytearray()
    if body_start != -1 and body_start < len(initial):
        body.extend(initial[body_start:])
        remaining -= len(body)
    elif body_start == -1 or remaining == UNBOUNDED_CONTENT_LENGTH:
        remaining = 0

    while remaining > 0:
        chunk = client_socket.recv(min(BODY_READ_CHUNK_SIZE, remaining))
        if not chunk:
            break
        body.extend(chunk)
        remaining -= len(chunk)
    return bytes(body)


def _read_form_text(reader: LineReader) -> str:
    text = ""
    chunk = reader.read(BODY_READ_CHUNK_SIZE)
    while chunk:
        text += chunk
        if text.endswith("\r\n"):
            break
        chunk = reader.read(BODY_READ_CHUNK_SIZE)
    return text


def decode_body(request: HTTPRequest, body: bytes) -> None:
    """Decode a POST body into the request's params and files."""
    content_type = request.headers.get("content-type", "")
    reader = LineReader(body)
    if is_multipart(content_type):
        boundary = extract_boundary(content_type)
        decode_multipart(boundary, body, reader, request.params, request.files)
        return
    decode_params(_read_form_text(reader).strip(), request.params)


def remove_temp_files(files: dict[str, str]) -> None:
    for path in files.values():
        if not path:
            continue
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("could not remove upload temp file %s: %s", path, exc)


def read_request(client_socket: socket.socket) -> HTTPRequest | RequestFault | None:
    """Read and decode one request from ``client_socket``.

    Returns None when the peer closed the connection before sending anything,
    a RequestFault when the request cannot be decoded, and the decoded
    request otherwise.
    """
    try:
        initial = client_socket.recv(HEADER_BUFFER_SIZE)
    except OSError as exc:
        return RequestFault(HTTP_INTERNALERROR, f"SERVER INTERNAL ERROR: IOException: {exc}")
    if not initial:
        return None

    request: HTTPRequest | None = None
    try:
        request = decode_header(LineReader(initial))
        body = read_body(client_socket, initial, request.headers)
        if request.method.upper() == "POST":
            decode_body(request, body)
    except HTTPRequestParseError as exc:
        if request is not None:
            remove_temp_files(request.files)
        return RequestFault(STATUS_BY_CODE.get(exc.status_code, HTTP_BADREQUEST), str(exc))
    except OSError as exc:
        if request is not None:
            remove_temp_files(request.files)
        return RequestFault(HTTP_INTERNALERROR, f"SERVER INTERNAL ERROR: IOException: {exc}")

    logger.debug(
        "decoded %s %s headers=%s params=%s",
        request.method,
        request.uri,
        request.headers,
        request.params,
    )
    return request


def write_response(
    client_socket: socket.socket,
    response: Response,
    *,
    write_buffer_size: int = WRITE_BUFFER_SIZE,
) -> int:
    """Write ``response`` and stream its body source; return the bytes sent.

    A failed write or a failing body source closes the connection, so the
    client sees a truncated body. The body source is closed either way.
    """
    bytes_sent = 0
    try:
        head = serialize_head(response)
        client_socket.sendall(head)
        bytes_sent += len(head)

        if response.data is not None:
            with opened(response.data) as source:
                buffer = bytearray(write_buffer_size)
                view = memoryview(buffer)
                read = source.readinto(buffer)
                while read > 0:
                    client_socket.sendall(view[:read])
                    bytes_sent += read
                    read = source.readinto(buffer)
    except OSError as exc:
        logger.debug("connection closed while writing response: %s", exc)
        client_socket.close()
    except Exception:
        logger.exception("body source failed after %d bytes of %s", bytes_sent, response.status)
        client_socket.close()
    return bytes_sent


def send_error(client_socket: socket.socket, status: str, message: str) -> int:
    """Send a bodiless plain-text error response."""
    logger.warning("request aborted with %s: %s", status, message)
    return write_response(client_socket, Response(status=status, mime_type=MIME_PLAINTEXT))
