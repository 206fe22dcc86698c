"""Streaming HTTP server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import errno
import json
import logging
import socket
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from config import ACCEPT_POLL_SECS, HOST, LISTEN_BACKLOG, LOG_FORMAT, PORT, ROOT_DIR
from errors import BindInUseError
from handlers.file_handlers import make_file_server
from request import HTTPRequest
from response import HTTP_INTERNALERROR, Response, ServeCallback
from socket_handler import (
    RequestFault,
    read_request,
    remove_temp_files,
    send_error,
    write_response,
)

logger = logging.getLogger(__name__)

PortReleaser = Callable[[], None]


@dataclass(slots=True)
class SessionResult:
    status: str
    bytes_sent: int


class StreamServer:
    """Accepts connections and runs one session thread per connection.

    ``serve`` is called with the decoded request and returns the Response
    to stream back. Subclasses may override :meth:`serve` instead of passing
    a callback; with neither, files under ``root_dir`` are served.

    ``port_releaser`` asks the alternate service that shares this port to let
    it go. It is called at most once, when the first bind finds the port
    taken.
    """

    def __init__(
        self,
        serve: ServeCallback | None = None,
        host: str = HOST,
        port: int = PORT,
        root_dir: Path | str = ROOT_DIR,
        *,
        port_releaser: PortReleaser | None = None,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.host = host
        self.port = port
        self.root_dir = Path(root_dir)
        self.port_releaser = port_releaser
        self.log_format = log_format
        self._serve = serve or make_file_server(self.root_dir)

        self._server_socket: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._running = False
        self._session_seq = 0

    @property
    def running(self) -> bool:
        return self._running

    def serve(
        self,
        uri: str,
        method: str,
        headers: dict[str, str],
        params: dict[str, str],
        files: dict[str, str],
    ) -> Response | None:
        return self._serve(uri, method, headers, params, files)

    def start(self) -> StreamServer:
        """Bind the listening socket and start accepting in the background."""
        if self._running:
            raise RuntimeError("server is already running")

        server_socket = self._bind()
        server_socket.listen(LISTEN_BACKLOG)
        server_socket.settimeout(ACCEPT_POLL_SECS)
        self._server_socket = server_socket
        self.port = server_socket.getsockname()[1]
        self._running = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            args=(server_socket,),
            name=f"http-acceptor-{self.port}",
            daemon=True,
        )
        self._accept_thread.start()
        logger.info("listening on %s:%s root=%s", self.host, self.port, self.root_dir)
        return self

    def stop(self) -> None:
        """Stop accepting connections; sessions already running are left to finish."""
        self._running = False
        server_socket = self._server_socket
        if server_socket is not None:
            try:
                server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Some platforms refuse shutdown on a listening socket.
                pass
            server_socket.close()
            self._server_socket = None
        if self._accept_thread is not None:
            self._accept_thread.join()
            self._accept_thread = None
        logger.info("stopped listening on %s:%s", self.host, self.port)

    def _bind_socket(self) -> socket.socket:
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
        except OSError:
            server_socket.close()
            raise
        return server_socket

    def _bind(self) -> socket.socket:
        try:
            return self._bind_socket()
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            if self.port_releaser is None:
                raise BindInUseError(exc.errno, f"port {self.port} is already in use") from exc

        logger.warning("port %s is in use, asking the alternate service to release it", self.port)
        self.port_releaser()
        try:
            return self._bind_socket()
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            raise BindInUseError(
                exc.errno,
                f"port {self.port} is still in use after the release request",
            ) from exc

    def _accept_loop(self, server_socket: socket.socket) -> None:
        while self._running:
            try:
                client_socket, address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            client_socket.settimeout(None)
            self._session_seq += 1
            session = threading.Thread(
                target=self._handle_session,
                args=(client_socket, address),
                name=f"http-session-{self._session_seq}",
                daemon=True,
            )
            session.start()

    def _handle_session(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        started_at = time.perf_counter()
        with client_socket:
            outcome = read_request(client_socket)
            if outcome is None:
                return

            if isinstance(outcome, RequestFault):
                bytes_sent = send_error(client_socket, outcome.status, outcome.message)
                self._log_access(address, "-", "-", outcome.status, bytes_sent, started_at)
                return

            try:
                response = self._respond(client_socket, outcome)
            finally:
                remove_temp_files(outcome.files)
            self._log_access(
                address,
                outcome.method,
                outcome.uri,
                response.status,
                response.bytes_sent,
                started_at,
            )

    def _respond(self, client_socket: socket.socket, request: HTTPRequest) -> SessionResult:
        try:
            response = self.serve(
                request.uri,
                request.method,
                request.headers,
                request.params,
                request.files,
            )
        except Exception:
            logger.exception("Unhandled error in serve callback for %s", request.uri)
            bytes_sent = send_error(
                client_socket,
                HTTP_INTERNALERROR,
                "SERVER INTERNAL ERROR: serve() failed.",
            )
            return SessionResult(HTTP_INTERNALERROR, bytes_sent)

        if response is None:
            bytes_sent = send_error(
                client_socket,
                HTTP_INTERNALERROR,
                "SERVER INTERNAL ERROR: serve() returned a null response.",
            )
            return SessionResult(HTTP_INTERNALERROR, bytes_sent)

        return SessionResult(response.status, write_response(client_socket, response))

    def _log_access(
        self,
        address: tuple[str, int],
        method: str,
        uri: str,
        status: str,
        bytes_out: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "uri": uri,
            "status": status,
            "bytes_out": bytes_out,
            "duration_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s uri=%s status=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["method"],
            event["uri"],
            event["status"],
            event["bytes_out"],
            duration_ms,
        )


def start_server(
    serve: ServeCallback | None,
    port: int = PORT,
    root_dir: Path | str = ROOT_DIR,
    *,
    host: str = HOST,
    port_releaser: PortReleaser | None = None,
) -> StreamServer:
    """Create a server, bind it and start accepting; returns the running server."""
    server = StreamServer(serve, host=host, port=port, root_dir=root_dir, port_releaser=port_releaser)
    return server.start()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the streaming HTTP server")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--root", default=ROOT_DIR, help="directory to serve files from")
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    return parser.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    logging.basicConfig(level=logging.INFO)
    server = StreamServer(
        host=args.host,
        port=args.port,
        root_dir=args.root,
        log_format=args.log_format,
    ).start()
    try:
        while server.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        server.stop()
