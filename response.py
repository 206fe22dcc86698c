"""HTTP response model, status lines and MIME constants."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from email.utils import formatdate

from stream_source import BytesStreamSource, StreamSource

HTTP_OK = "200 OK"
HTTP_PARTIALCONTENT = "206 Partial Content"
HTTP_REDIRECT = "301 Moved Permanently"
HTTP_NOT_MODIFIED = "304 Not Modified"
HTTP_BADREQUEST = "400 Bad Request"
HTTP_FORBIDDEN = "403 Forbidden"
HTTP_NOTFOUND = "404 Not Found"
HTTP_RANGE_NOT_SATISFIABLE = "416 Requested Range Not Satisfiable"
HTTP_INTERNALERROR = "500 Internal Server Error"
HTTP_NOTIMPLEMENTED = "501 Not Implemented"

STATUS_BY_CODE: dict[int, str] = {
    200: HTTP_OK,
    206: HTTP_PARTIALCONTENT,
    301: HTTP_REDIRECT,
    304: HTTP_NOT_MODIFIED,
    400: HTTP_BADREQUEST,
    403: HTTP_FORBIDDEN,
    404: HTTP_NOTFOUND,
    416: HTTP_RANGE_NOT_SATISFIABLE,
    500: HTTP_INTERNALERROR,
    501: HTTP_NOTIMPLEMENTED,
}

MIME_PLAINTEXT = "text/plain"
MIME_HTML = "text/html"
MIME_DEFAULT_BINARY = "application/octet-stream"
MIME_XML = "text/xml"


@dataclass(slots=True)
class Response:
    status: str
    mime_type: str | None = None
    data: StreamSource | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.status:
            raise ValueError("Response status cannot be empty")

    def add_header(self, name: str, value: str) -> None:
        self.headers[name] = value


ServeCallback = Callable[
    [str, str, dict[str, str], dict[str, str], dict[str, str]],
    Response | None,
]


def text_response(status: str, text: str, mime_type: str = MIME_PLAINTEXT) -> Response:
    body = BytesStreamSource(text)
    return Response(
        status=status,
        mime_type=mime_type,
        data=body,
        headers={"Content-Length": str(len(body))},
    )


def serialize_head(response: Response) -> bytes:
    """Serialize the status line and headers, ending with the blank line."""
    lines = [f"HTTP/1.0 {response.status}"]
    if response.mime_type is not None:
        lines.append(f"Content-Type: {response.mime_type}")
    if not any(name.lower() == "date" for name in response.headers):
        lines.append(f"Date: {formatdate(timeval=None, localtime=False, usegmt=True)}")
    lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    return "\r\n".join(lines).encode("iso-8859-1", errors="replace") + b"\r\n\r\n"
