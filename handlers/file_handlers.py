"""File-serving handler used when the embedding application supplies no callback."""

from __future__ import annotations

import html
from email.utils import formatdate
from pathlib import Path
from urllib.parse import quote

from response import (
    HTTP_FORBIDDEN,
    HTTP_NOT_MODIFIED,
    HTTP_NOTFOUND,
    HTTP_NOTIMPLEMENTED,
    HTTP_OK,
    HTTP_PARTIALCONTENT,
    HTTP_RANGE_NOT_SATISFIABLE,
    HTTP_REDIRECT,
    MIME_HTML,
    MIME_PLAINTEXT,
    Response,
    ServeCallback,
    text_response,
)
from stream_source import BytesStreamSource, FileStreamSource
from utils import get_content_type, resolve_file

INDEX_FILES = ("index.html", "index.htm")


class RangeNotSatisfiableError(Exception):
    """Raised when a byte range starts past the end of the file."""


def parse_byte_range(header: str | None, size: int) -> tuple[int, int] | None:
    """Return the inclusive ``(first, last)`` positions of a single ``bytes=`` range.

    Malformed or multi-range headers yield None so the whole file is served.
    """
    if header is None:
        return None
    unit, _separator, range_spec = header.partition("=")
    if unit.strip().lower() != "bytes" or "," in range_spec:
        return None
    first_text, dash, last_text = range_spec.strip().partition("-")
    if not dash:
        return None

    try:
        if not first_text:
            suffix_length = int(last_text)
            if suffix_length <= 0 or size == 0:
                raise RangeNotSatisfiableError(header)
            return max(size - suffix_length, 0), size - 1
        first = int(first_text)
        last = int(last_text) if last_text else size - 1
    except ValueError:
        return None

    if last < first:
        return None
    if first >= size:
        raise RangeNotSatisfiableError(header)
    return first, min(last, size - 1)


def make_file_server(root_dir: Path | str) -> ServeCallback:
    root = Path(root_dir)

    def serve(
        uri: str,
        method: str,
        headers: dict[str, str],
        params: dict[str, str],
        files: dict[str, str],
    ) -> Response:
        _ = params, files
        return serve_file(uri, method, headers, root)

    return serve


def serve_file(uri: str, method: str, headers: dict[str, str], root_dir: Path) -> Response:
    if method.upper() not in {"GET", "HEAD"}:
        return text_response(HTTP_NOTIMPLEMENTED, "Not Implemented")

    path = resolve_file(uri, root_dir)
    if path is None:
        return text_response(HTTP_FORBIDDEN, "Forbidden")

    if not path.exists():
        return text_response(HTTP_NOTFOUND, "Not Found")

    if path.is_dir():
        if not uri.endswith("/"):
            location = quote(uri + "/")
            response = text_response(
                HTTP_REDIRECT,
                f'<html><body>Redirected: <a href="{location}">{html.escape(uri)}/</a></body></html>',
                MIME_HTML,
            )
            response.add_header("Location", location)
            return response

        index = next((path / name for name in INDEX_FILES if (path / name).is_file()), None)
        if index is None:
            return _directory_listing(uri, path, method)
        path = index

    return _file_response(path, method, headers)


def _file_response(path: Path, method: str, headers: dict[str, str]) -> Response:
    file_stat = path.stat()
    size = file_stat.st_size
    etag = f'"{file_stat.st_mtime_ns:x}-{size:x}"'

    if_none_match = headers.get("if-none-match")
    if if_none_match is not None and if_none_match.strip() == etag:
        response = Response(status=HTTP_NOT_MODIFIED)
        response.add_header("ETag", etag)
        return response

    try:
        byte_range = parse_byte_range(headers.get("range"), size)
    except RangeNotSatisfiableError:
        response = Response(status=HTTP_RANGE_NOT_SATISFIABLE, mime_type=MIME_PLAINTEXT)
        response.add_header("Content-Range", f"bytes */{size}")
        response.add_header("ETag", etag)
        return response

    if byte_range is None:
        status, offset, length = HTTP_OK, 0, size
    else:
        first, last = byte_range
        status, offset, length = HTTP_PARTIALCONTENT, first, last - first + 1

    response = Response(status=status, mime_type=get_content_type(path))
    response.add_header("Accept-Ranges", "bytes")
    response.add_header("ETag", etag)
    response.add_header("Last-Modified", formatdate(file_stat.st_mtime, usegmt=True))
    if byte_range is not None:
        response.add_header("Content-Range", f"bytes {offset}-{offset + length - 1}/{size}")
    response.add_header("Content-Length", str(length))
    if method.upper() != "HEAD":
        response.data = FileStreamSource(path, offset=offset, length=length)
    return response


def _directory_listing(uri: str, directory: Path, method: str) -> Response:
    entries = sorted(directory.iterdir(), key=lambda entry: (not entry.is_dir(), entry.name.lower()))
    lines = [f"<html><body><h1>Directory {html.escape(uri)}</h1>"]
    if uri != "/":
        lines.append('<a href="..">..</a><br/>')
    for entry in entries:
        name = entry.name + ("/" if entry.is_dir() else "")
        lines.append(f'<a href="{quote(name)}">{html.escape(name)}</a><br/>')
    lines.append("</body></html>")

    body = BytesStreamSource("\n".join(lines))
    response = Response(status=HTTP_OK, mime_type=MIME_HTML)
    response.add_header("Content-Length", str(len(body)))
    if method.upper() != "HEAD":
        response.data = body
    return response
