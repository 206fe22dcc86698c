"""HTTP request model and request-line/header decoder."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import unquote

from errors import HTTPRequestParseError
from params import decode_params
from utils import LineReader, decode_percent, split_header_line


@dataclass(slots=True)
class HTTPRequest:
    method: str
    uri: str
    http_version: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    files: dict[str, str] = field(default_factory=dict)


def decode_header(reader: LineReader) -> HTTPRequest:
    """Decode the request line and header block from the start of a connection.

    The query string, if any, is decoded into ``params`` and removed from the
    URI; only then is the path form-decoded, so ``+`` in a bare path stays
    literal. Header names are lower-cased and the last occurrence wins. Headers
    are only read when the request line carries a protocol version token,
    so bare ``GET /path`` requests have an empty header mapping.
    """
    request_line = reader.readline()
    tokens = request_line.split() if request_line else []
    if not tokens:
        raise HTTPRequestParseError("BAD REQUEST: Syntax error. Usage: GET /example/file.html")
    if len(tokens) < 2:
        raise HTTPRequestParseError("BAD REQUEST: Missing URI. Usage: GET /example/file.html")

    method, raw_uri = tokens[0], tokens[1]
    http_version = tokens[2] if len(tokens) > 2 else None

    params: dict[str, str] = {}
    path, query_separator, query = raw_uri.partition("?")
    if query_separator:
        decode_params(query, params)
        uri = decode_percent(path)
    else:
        # A bare path keeps "+" literal and passes malformed escapes through.
        uri = unquote(path)

    headers: dict[str, str] = {}
    if http_version is not None:
        line = reader.readline()
        while line is not None and line.strip():
            header = split_header_line(line)
            if header is not None:
                name, value = header
                headers[name] = value
            line = reader.readline()

    return HTTPRequest(
        method=method,
        uri=uri,
        http_version=http_version,
        headers=headers,
        params=params,
    )
