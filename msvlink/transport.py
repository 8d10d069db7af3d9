"""Threaded TCP endpoints that report connections and data through callbacks.

Also provides helpers for sending and receiving on a plain socket with an
optional readiness timeout in seconds (0 waits without limit).
"""

from __future__ import annotations

import errno
import select
import socket
import threading
from typing import Callable, List, Optional

RECV_CHUNK = 1024
_ACCEPT_POLL = 0.2

ReceiveCallback = Callable[[socket.socket, bytes], None]
ServerConnectCallback = Callable[[socket.socket], None]
DisconnectCallback = Callable[[socket.socket], None]
ClientStateCallback = Callable[[socket.socket, bool], None]


class SocketError(OSError):
    """A socket could not be created, bound or connected, or became unusable."""


def _check_open(sock: socket.socket) -> None:
    if sock.fileno() == -1:
        raise SocketError(errno.EBADF, "socket is closed")


def _shutdown_close(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


def send_all(sock: socket.socket, data: bytes, timeout: float = 0) -> None:
    """Send every byte of ``data``.

    With a positive ``timeout`` the socket must become writable within that
    many seconds, otherwise ``TimeoutError`` is raised.  A socket that can no
    longer send raises ``SocketError``.
    """
    _check_open(sock)
    if timeout > 0:
        _, writable, _ = select.select([], [sock], [], timeout)
        if not writable:
            raise TimeoutError(f"socket not writable within {timeout} s")
    try:
        sock.sendall(data)
    except OSError as exc:
        raise SocketError(exc.errno or errno.EIO, f"send failed: {exc}") from exc


def recv_some(sock: socket.socket, size: int, timeout: float = 0) -> bytes:
    """Receive up to ``size`` bytes in a single read.

    With a positive ``timeout`` data must arrive within that many seconds,
    otherwise ``TimeoutError`` is raised.  A closed or broken connection
    raises ``SocketError``.
    """
    _check_open(sock)
    if timeout > 0:
        readable, _, _ = select.select([sock], [], [], timeout)
        if not readable:
            raise TimeoutError(f"no data within {timeout} s")
    try:
        chunk = sock.recv(size)
    except OSError as exc:
        raise SocketError(exc.errno or errno.EIO, f"receive failed: {exc}") from exc
    if not chunk:
        raise SocketError(errno.ECONNRESET, "connection closed by peer")
    return chunk


class AsyncTcpServer:
    """A listening TCP server that serves each client on its own thread.

    ``on_connect(client)`` runs when a client is accepted, ``on_receive(client,
    data)`` for every chunk it sends and ``on_disconnect(client)`` when it goes
    away or is closed.  Clients are identified by their socket objects.
    """

    def __init__(
        self,
        port: int,
        host: str = "",
        on_receive: Optional[ReceiveCallback] = None,
        on_connect: Optional[ServerConnectCallback] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.on_receive = on_receive
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self._listener: Optional[socket.socket] = None
        self._clients: List[socket.socket] = []
        self._lock = threading.Lock()
        self._running = False
        self._accept_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def clients(self) -> List[socket.socket]:
        with self._lock:
            return list(self._clients)

    def start(self) -> None:
        """Bind, listen and start accepting; does nothing if already running."""
        if self._running:
            return
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            raise SocketError(exc.errno or errno.EIO, "Failed to create server socket") from exc
        try:
            listener.bind((self.host, self.port))
            listener.listen(socket.SOMAXCONN)
        except OSError as exc:
            listener.close()
            raise SocketError(exc.errno or errno.EADDRINUSE, "Failed to bind server socket") from exc
        listener.settimeout(_ACCEPT_POLL)
        self.port = listener.getsockname()[1]
        self._listener = listener
        self._running = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(listener,), name="tcp-accept", daemon=True
        )
        self._accept_thread.start()

    def stop(self) -> None:
        """Close every client and the listening socket; does nothing if stopped."""
        if not self._running:
            return
        self._running = False
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            _shutdown_close(client)
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        thread = self._accept_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._accept_thread = None

    def send_to_client(self, client: socket.socket, data: bytes) -> bool:
        """Send ``data`` to one client; False if the send failed."""
        with self._lock:
            try:
                client.sendall(data)
            except OSError:
                return False
        return True

    def close_client(self, client: socket.socket) -> None:
        """Close one client and report it through ``on_disconnect``.

        A client that is no longer connected is left alone.
        """
        with self._lock:
            if client not in self._clients:
                return
            self._clients.remove(client)
        _shutdown_close(client)
        if self.on_disconnect:
            self.on_disconnect(client)

    def close_all_clients(self) -> None:
        """Close every client, reporting each through ``on_disconnect``."""
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            _shutdown_close(client)
            if self.on_disconnect:
                self.on_disconnect(client)

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def client_ip(self, client: socket.socket) -> str:
        try:
            return client.getpeername()[0]
        except OSError as exc:
            raise SocketError(exc.errno or errno.ENOTCONN, "client address unavailable") from exc

    def client_port(self, client: socket.socket) -> int:
        try:
            return client.getpeername()[1]
        except OSError as exc:
            raise SocketError(exc.errno or errno.ENOTCONN, "client address unavailable") from exc

    def __enter__(self) -> "AsyncTcpServer":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _accept_loop(self, listener: socket.socket) -> None:
        while self._running:
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                continue
            except OSError:
                if not self._running:
                    break
                continue
            conn.settimeout(None)
            if self.on_connect:
                self.on_connect(conn)
            with self._lock:
                if not self._running:
                    _shutdown_close(conn)
                    break
                self._clients.append(conn)
            threading.Thread(
                target=self._process_client, args=(conn,), name="tcp-client", daemon=True
            ).start()

    def _process_client(self, conn: socket.socket) -> None:
        while self._running:
            try:
                chunk = conn.recv(RECV_CHUNK)
            except OSError:
                chunk = b""
            if chunk:
                if self.on_receive:
                    self.on_receive(conn, chunk)
                continue
            with self._lock:
                present = conn in self._clients
                if present:
                    self._clients.remove(conn)
            if present:
                if self.on_disconnect:
                    self.on_disconnect(conn)
                _shutdown_close(conn)
            break


class AsyncTcpClient:
    """A TCP client that reads on a background thread.

    ``on_connect(sock, connected)`` reports both connecting (True) and
    disconnecting (False); ``on_receive(sock, data)`` gets every chunk read.
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_receive: Optional[ReceiveCallback] = None,
        on_connect: Optional[ClientStateCallback] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.on_receive = on_receive
        self.on_connect = on_connect
        self._sock: Optional[socket.socket] = None
        self._connected = False
        self._state_lock = threading.Lock()
        self._send_lock = threading.Lock()

    @property
    def socket(self) -> Optional[socket.socket]:
        return self._sock

    def connect(self) -> None:
        """Connect to the server; does nothing if already connected."""
        with self._state_lock:
            if self._connected:
                return
            try:
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            except OSError as exc:
                raise SocketError(exc.errno or errno.EIO, "Failed to create client socket") from exc
            try:
                sock.connect((self.host, self.port))
            except OSError as exc:
                sock.close()
                raise SocketError(
                    exc.errno or errno.ECONNREFUSED, "Failed to connect to server"
                ) from exc
            self._sock = sock
            self._connected = True
        if self.on_connect:
            self.on_connect(sock, True)
        threading.Thread(
            target=self._process_data, args=(sock,), name="tcp-client-recv", daemon=True
        ).start()

    def disconnect(self) -> None:
        """Report the disconnection and close the socket; no-op if not connected."""
        self._disconnect(None)

    def is_connected(self) -> bool:
        return self._connected

    def send(self, data: bytes) -> bool:
        """Send ``data`` to the server; False if not connected or the send failed."""
        with self._send_lock:
            sock = self._sock
            if sock is None:
                return False
            try:
                sock.sendall(data)
            except OSError:
                return False
        return True

    def __enter__(self) -> "AsyncTcpClient":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    def _disconnect(self, expected: Optional[socket.socket]) -> None:
        with self._state_lock:
            if not self._connected:
                return
            if expected is not None and self._sock is not expected:
                return
            sock = self._sock
            self._connected = False
            self._sock = None
        if self.on_connect:
            self.on_connect(sock, False)
        _shutdown_close(sock)

    def _process_data(self, sock: socket.socket) -> None:
        while self._connected and self._sock is sock:
            try:
                chunk = sock.recv(RECV_CHUNK)
            except OSError:
                chunk = b""
            if chunk:
                if self.on_receive:
                    self.on_receive(sock, chunk)
                continue
            self._disconnect(sock)
            break