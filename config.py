"""Configuration constants for the streaming HTTP server."""

HOST: str = "127.0.0.1"
PORT: int = 8080
ROOT_DIR: str = "."
HEADER_BUFFER_SIZE: int = 8192
BODY_READ_CHUNK_SIZE: int = 512
WRITE_BUFFER_SIZE: int = 8192
UNBOUNDED_CONTENT_LENGTH: int = 0x7FFFFFFFFFFFFFFF
LISTEN_BACKLOG: int = 128
ACCEPT_POLL_SECS: float = 0.2
TEMP_FILE_PREFIX: str = "streamserver-"
LOG_FORMAT: str = "plain"
