"""Byte and text scanning helpers shared across server modules."""

from __future__ import annotations

import io
import mimetypes
import string
from pathlib import Path

from errors import HTTPRequestParseError

HEADER_TERMINATOR = b"\r\n\r\n"
_HEX_DIGITS = frozenset(string.hexdigits)


class LineReader:
    """Line-oriented text view over an in-memory byte buffer.

    Lines may end in CRLF, LF or a lone CR; the terminator is stripped.
    Undecodable bytes are replaced so binary multipart content can be
    scanned for boundary lines without failing.
    """

    def __init__(self, data: bytes, encoding: str = "utf-8") -> None:
        self._stream = io.TextIOWrapper(
            io.BytesIO(data),
            encoding=encoding,
            errors="replace",
            newline="",
        )

    def readline(self) -> str | None:
        """Return the next line without its terminator, or None at end of data."""
        line = self._stream.readline()
        if not line:
            return None
        if line.endswith("\r\n"):
            return line[:-2]
        return line[:-1] if line[-1] in "\r\n" else line

    def read(self, size: int) -> str:
        return self._stream.read(size)


def decode_percent(text: str) -> str:
    """Decode ``+`` and ``%XX`` escapes.

    "an+example%20string" decodes to "an example string". Escaped bytes are
    collected and decoded as UTF-8 so multi-byte escapes come out whole.
    """
    decoded = bytearray()
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == "+":
            decoded.append(0x20)
        elif char == "%":
            hex_pair = text[index + 1 : index + 3]
            if len(hex_pair) != 2 or not _HEX_DIGITS.issuperset(hex_pair):
                raise HTTPRequestParseError("BAD REQUEST: Bad percent-encoding.")
            decoded.append(int(hex_pair, 16))
            index += 2
        else:
            decoded.extend(char.encode("utf-8"))
        index += 1
    return decoded.decode("utf-8", errors="replace")


def split_header_line(line: str) -> tuple[str, str] | None:
    """Split ``name: value`` into a lower-cased name and a trimmed value."""
    separator = line.find(":")
    if separator == -1:
        return None
    return line[:separator].strip().lower(), line[separator + 1 :].strip()


def find_header_end(buffer: bytes) -> int:
    """Return the offset just past the first CRLF CRLF, or -1 if absent."""
    index = buffer.find(HEADER_TERMINATOR)
    if index == -1:
        return -1
    return index + len(HEADER_TERMINATOR)


def find_boundary_positions(body: bytes, boundary: bytes) -> list[int]:
    """Return every offset where ``boundary`` starts, scanning left to right.

    Matches do not overlap: scanning resumes after the end of each match.
    """
    if not boundary:
        return []
    positions: list[int] = []
    start = body.find(boundary)
    while start != -1:
        positions.append(start)
        start = body.find(boundary, start + len(boundary))
    return positions


def strip_multipart_headers(body: bytes, offset: int) -> int:
    """Return the offset where part content starts after the part's header block."""
    header_end = body.find(HEADER_TERMINATOR, offset)
    if header_end == -1:
        return len(body)
    return header_end + len(HEADER_TERMINATOR)


def get_content_type(file_path: Path) -> str:
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    return content_type or "application/octet-stream"


def resolve_file(uri: str, root_dir: Path) -> Path | None:
    """Resolve a decoded request URI under ``root_dir`` or return None for traversal attempts."""
    root = root_dir.resolve()

    try:
        candidate = (root / uri.lstrip("/")).resolve()
        candidate.relative_to(root)
    except ValueError:
        return None

    return candidate
