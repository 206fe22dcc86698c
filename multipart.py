"""multipart/form-data decoder that spills file parts to temporary files."""

from __future__ import annotations

import logging
import tempfile

from config import TEMP_FILE_PREFIX
from errors import HTTPRequestParseError
from utils import (
    LineReader,
    find_boundary_positions,
    split_header_line,
    strip_multipart_headers,
)

MULTIPART_FORM_DATA = "multipart/form-data"
# CRLF plus the two leading dashes that precede every boundary token.
BOUNDARY_SEPARATOR_LENGTH = 4

logger = logging.getLogger(__name__)


def _content_type_tokens(content_type: str) -> list[str]:
    return content_type.replace(";", " ").split()


def is_multipart(content_type: str) -> bool:
    tokens = _content_type_tokens(content_type)
    return bool(tokens) and tokens[0].lower() == MULTIPART_FORM_DATA


def extract_boundary(content_type: str) -> str:
    """Return the boundary token declared in a multipart content-type header."""
    tokens = _content_type_tokens(content_type)
    if len(tokens) < 2:
        raise HTTPRequestParseError(
            "BAD REQUEST: Content type is multipart/form-data but boundary missing."
        )

    parameter = [token for token in tokens[1].split("=") if token]
    if len(parameter) != 2:
        raise HTTPRequestParseError(
            "BAD REQUEST: Content type is multipart/form-data but boundary syntax error."
        )
    return _unquote(parameter[1])


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _parse_disposition(content_disposition: str | None) -> dict[str, str]:
    if content_disposition is None:
        raise HTTPRequestParseError(
            "BAD REQUEST: Content type is multipart/form-data but no content-disposition info found."
        )

    disposition: dict[str, str] = {}
    for token in content_disposition.split(";"):
        key, separator, value = token.partition("=")
        if separator:
            disposition[key.strip().lower()] = _unquote(value.strip())
    return disposition


def save_tmp_file(body: bytes, offset: int, length: int) -> str:
    """Copy ``length`` bytes of ``body`` from ``offset`` into a new temporary file.

    Returns the file's path, or an empty string when there is nothing to save.
    """
    if length <= 0:
        return ""

    with tempfile.NamedTemporaryFile(prefix=TEMP_FILE_PREFIX, delete=False) as temp_file:
        temp_file.write(memoryview(body)[offset : offset + length])
    logger.debug("saved %d upload bytes to %s", length, temp_file.name)
    return temp_file.name


def _field_value(body: bytes, offset: int, end: int) -> str:
    """Return field text from ``offset`` up to ``end``, the leading "--" of the next boundary.

    Only the CRLF directly before the boundary is dropped; other line breaks
    are kept as sent.
    """
    value = body[offset:end] if end > offset else b""
    if value.endswith(b"\r\n"):
        value = value[:-2]
    return value.decode("utf-8", errors="replace")


def _skip_to_boundary(reader: LineReader, boundary: str) -> str | None:
    line = reader.readline()
    while line is not None and boundary not in line:
        line = reader.readline()
    return line


def decode_multipart(
    boundary: str,
    body: bytes,
    reader: LineReader,
    params: dict[str, str],
    files: dict[str, str],
) -> None:
    """Split a multipart body into ``params`` fields and ``files`` uploads.

    ``reader`` walks the body as text to find part headers, while field
    values and file content are sliced out of the raw ``body`` bytes using
    the boundary offsets, so both survive byte for byte. A part with a
    content-type header is a file: its temporary path goes to ``files`` and
    its filename to ``params``.
    """
    positions = find_boundary_positions(body, boundary.encode("utf-8"))
    boundary_count = 1
    line = reader.readline()
    while line is not None:
        if boundary not in line:
            raise HTTPRequestParseError(
                "BAD REQUEST: Content type is multipart/form-data but next chunk "
                "does not start with boundary."
            )
        boundary_count += 1

        part_headers: dict[str, str] = {}
        line = reader.readline()
        while line is not None and line.strip():
            header = split_header_line(line)
            if header is not None:
                name, value = header
                part_headers[name] = value
            line = reader.readline()
        if line is None:
            break

        disposition = _parse_disposition(part_headers.get("content-disposition"))
        field_name = disposition.get("name")
        if field_name is None:
            raise HTTPRequestParseError(
                "BAD REQUEST: multipart content-disposition is missing the field name."
            )

        if boundary_count - 2 >= len(positions):
            raise HTTPRequestParseError("Error processing request", status_code=500)
        offset = strip_multipart_headers(body, positions[boundary_count - 2])
        has_closing_boundary = boundary_count <= len(positions)

        if "content-type" not in part_headers:
            # A field left open at the end of the body runs to the last byte.
            end = positions[boundary_count - 1] - 2 if has_closing_boundary else len(body)
            value = _field_value(body, offset, end)
        else:
            if not has_closing_boundary:
                raise HTTPRequestParseError("Error processing request", status_code=500)
            length = positions[boundary_count - 1] - offset - BOUNDARY_SEPARATOR_LENGTH
            files[field_name] = save_tmp_file(body, offset, length)
            value = disposition.get("filename", "")
        params[field_name] = value
        line = _skip_to_boundary(reader, boundary)
