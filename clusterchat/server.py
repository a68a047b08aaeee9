"""TCP front end of the chat server: accepts connections and feeds messages to the service."""

from __future__ import annotations

import itertools
import json
import logging
import socket
import sys
import threading
import time
from typing import Any

from .service import ChatService

log = logging.getLogger(__name__)

_RECV_SIZE = 4096
_MAX_PENDING = 1 << 16
_ACCEPT_POLL = 0.2


def _split_frames(buffer: bytes) -> tuple[list[bytes], bytes]:
    """Cut complete messages off ``buffer``; return them and the unfinished rest.

    Messages are normally NUL-terminated; an unterminated tail that already
    parses as JSON is taken as a message as well.
    """
    *complete, rest = buffer.split(b"\0")
    frames = [part for part in complete if part.strip()]
    if not rest.strip():
        return frames, b""
    try:
        json.loads(rest)
    except ValueError:
        if len(rest) > _MAX_PENDING:
            frames.append(rest)
            rest = b""
    else:
        frames.append(rest)
        rest = b""
    return frames, rest


class Connection:
    """One client connection; sending is safe from several threads."""

    def __init__(self, sock: socket.socket, name: str) -> None:
        self.sock = sock
        self.name = name
        self._lock = threading.Lock()

    def send(self, data: str | bytes) -> None:
        """Send ``data`` to the client; failures are logged."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            try:
                self.sock.sendall(payload)
            except OSError as exc:
                log.error("send to %s failed: %s", self.name, exc)

    def shutdown(self) -> None:
        """Close the sending half of the connection."""
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError:
            pass

    def __repr__(self) -> str:
        return f"Connection({self.name!r})"


class ChatServer:
    """Listens for clients and hands every message to the chat service."""

    def __init__(
        self,
        host: str,
        port: int,
        name: str = "ChatServer",
        service: Any = None,
    ) -> None:
        self.host = host
        self.port = port
        self.name = name
        self._service = service if service is not None else ChatService()
        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._stopping = threading.Event()
        self._conns: set[Connection] = set()
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def start(self) -> None:
        """Bind the listening socket and start accepting clients in the background."""
        if self._listener is not None:
            raise RuntimeError("server already started")
        listener = socket.create_server((self.host, self.port))
        listener.settimeout(_ACCEPT_POLL)
        self.port = listener.getsockname()[1]
        self._listener = listener
        self._stopping.clear()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(listener,), name="chat-accept", daemon=True
        )
        self._accept_thread.start()

    def stop(self) -> None:
        """Stop accepting clients and drop the open connections."""
        self._stopping.set()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=2.0)
            self._accept_thread = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        with self._lock:
            conns = list(self._conns)
        for conn in conns:
            try:
                conn.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def on_connection(self, conn: Connection, connected: bool) -> None:
        """React to a client connecting or going away."""
        if not connected:
            self._service.client_close_exception(conn)
            conn.shutdown()
        else:
            print(f"{self.name} - {conn.name} has connected.")

    def on_message(self, conn: Connection, data: str | bytes, time: Any) -> None:
        """Parse one JSON message and run the service handler for its ``msgid``."""
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        js = json.loads(text.strip("\0 \t\r\n"))
        if not isinstance(js, dict):
            raise ValueError("message is not a JSON object")
        handler = self._service.get_handler(int(js["msgid"]))
        handler(conn, js, time)

    def _accept_loop(self, listener: socket.socket) -> None:
        while not self._stopping.is_set():
            try:
                sock, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            sock.settimeout(None)
            conn = Connection(
                sock, f"{self.name}-{addr[0]}:{addr[1]}#{next(self._counter)}"
            )
            with self._lock:
                self._conns.add(conn)
            threading.Thread(
                target=self._serve, args=(conn,), name=conn.name, daemon=True
            ).start()

    def _serve(self, conn: Connection) -> None:
        self.on_connection(conn, True)
        buffer = b""
        try:
            while True:
                chunk = conn.sock.recv(_RECV_SIZE)
                if not chunk:
                    break
                frames, buffer = _split_frames(buffer + chunk)
                for frame in frames:
                    try:
                        self.on_message(conn, frame, time.time())
                    except (ValueError, KeyError, TypeError) as exc:
                        log.error("bad message from %s: %s", conn.name, exc)
        except OSError:
            pass
        finally:
            with self._lock:
                self._conns.discard(conn)
            self.on_connection(conn, False)
            conn.sock.close()


def main(argv: list[str] | None = None) -> int:
    """Run the chat server on the address given as ``ip port``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("command invalid! example: chatserver 127.0.0.1 6000", file=sys.stderr)
        return 1
    ip = args[0]
    try:
        port = int(args[1])
    except ValueError:
        print(f"invalid port: {args[1]}", file=sys.stderr)
        return 1

    service = ChatService()
    server = ChatServer(ip, port, "ChatServer", service)
    try:
        server.start()
    except OSError as exc:
        print(f"cannot listen on {ip}:{port}: {exc}", file=sys.stderr)
        return 1
    try:
        while True:
            time.sleep(3600)
    except KeyboardInterrupt:
        service.reset()
    finally:
        server.stop()
    return 0