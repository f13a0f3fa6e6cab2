import abc
import logging
import select
import socket
import ssl
from typing import Optional

from .errors import TransportError

logger = logging.getLogger(__name__)


class Transport(abc.ABC):
    """Byte-level control connection used by FtpControlConnection."""

    @abc.abstractmethod
    def connect(self, host: str, port: int):
        """Opens the TCP connection."""

    @abc.abstractmethod
    def disconnect(self):
        """Closes the connection. Must unblock a reader stuck in read_line."""

    @abc.abstractmethod
    def is_connected(self) -> bool:
        """True while the connection is open."""

    @abc.abstractmethod
    def read_line(self) -> Optional[bytes]:
        """Next line without its terminator, None at end of stream."""

    @abc.abstractmethod
    def read_bytes(self, size: int) -> bytes:
        """Up to ``size`` raw bytes."""

    @abc.abstractmethod
    def write_bytes(self, data: bytes):
        """Writes all of ``data``."""

    @abc.abstractmethod
    def poll_readable(self, timeout: float) -> bool:
        """Waits up to ``timeout`` seconds for the socket to become readable."""

    @abc.abstractmethod
    def available_bytes(self) -> int:
        """Bytes that can be read right now without blocking."""

    @abc.abstractmethod
    def upgrade_to_tls(self):
        """Wraps the connection in TLS (explicit AUTH or implicit mode)."""

    @abc.abstractmethod
    def is_tls_active(self) -> bool:
        """True once upgrade_to_tls succeeded."""

    def peer_address(self):
        raise NotImplementedError

    def local_address(self):
        raise NotImplementedError

    def wrap_data_socket(self, sock):
        raise NotImplementedError


class SocketTransport(Transport):
    def __init__(self, timeout: float = 10.0, ssl_context: ssl.SSLContext = None, ssl_verify: bool = True):
        self.host = None
        self.port = None
        self.socket: socket.socket = None
        self.timeout = timeout
        self.ssl_context = ssl_context
        self.ssl_verify = ssl_verify
        self._buffer = bytearray()
        self._tls_active = False

    # ---------------- conexion ----------------
    def connect(self, host: str, port: int):
        if self.socket is not None:
            raise TransportError("Connection already established.")
        self.host = host
        self.port = port
        try:
            logger.info("Connecting to %s:%s (timeout=%ss)", host, port, self.timeout)
            sock = socket.create_connection((host, port), timeout=self.timeout)
            # the timeout only bounds connect(); reply reads are bounded by the control connection
            sock.settimeout(None)
            self.socket = sock
            logger.info("✓ Connected to %s:%s", host, port)
        except OSError as e:
            logger.error("✗ Failed to connect to %s:%s - %s", host, port, e)
            self.socket = None
            raise TransportError(f"Failed to connect to {host}:{port} - {e}") from e

    def disconnect(self):
        if self.socket:
            try:
                logger.info("Closing connection to %s:%s", self.host, self.port)
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.socket.close()
            logger.info("✓ Disconnected from %s:%s", self.host, self.port)
        self.socket = None
        self._buffer.clear()
        self._tls_active = False

    def is_connected(self) -> bool:
        return self.socket is not None

    def _require_socket(self) -> socket.socket:
        sock = self.socket
        if sock is None:
            raise TransportError("No connection established.")
        return sock

    # ---------------- lectura / escritura ----------------
    def read_line(self) -> Optional[bytes]:
        sock = self._require_socket()
        while True:
            index = self._buffer.find(b"\n")
            if index >= 0:
                line = bytes(self._buffer[:index])
                del self._buffer[:index + 1]
                return line.rstrip(b"\r")
            try:
                chunk = sock.recv(4096)
            except OSError as e:
                raise TransportError(f"Read from {self.host}:{self.port} failed - {e}") from e
            if not chunk:
                if self._buffer:
                    line = bytes(self._buffer)
                    self._buffer.clear()
                    return line.rstrip(b"\r")
                return None
            self._buffer.extend(chunk)

    def read_bytes(self, size: int) -> bytes:
        sock = self._require_socket()
        if self._buffer:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            return data
        try:
            return sock.recv(size)
        except OSError as e:
            raise TransportError(f"Read from {self.host}:{self.port} failed - {e}") from e

    def write_bytes(self, data: bytes):
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Write to {self.host}:{self.port} failed - {e}") from e

    def poll_readable(self, timeout: float) -> bool:
        sock = self._require_socket()
        if self._buffer or (self._tls_active and sock.pending()):
            return True
        readable, _, _ = select.select([sock], [], [], timeout)
        return bool(readable)

    def available_bytes(self) -> int:
        sock = self._require_socket()
        available = len(self._buffer)
        if self._tls_active:
            available += sock.pending()
        try:
            # raw peek below any TLS layer; SSLSocket.recv rejects flags
            peeked = socket.socket.recv(sock, 4096, socket.MSG_PEEK | socket.MSG_DONTWAIT)
        except (BlockingIOError, InterruptedError):
            return available
        except OSError as e:
            raise TransportError(f"Socket check on {self.host}:{self.port} failed - {e}") from e
        return available + len(peeked)

    # ---------------- TLS ----------------
    def _context(self) -> ssl.SSLContext:
        if self.ssl_context is None:
            context = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
            if not self.ssl_verify:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            self.ssl_context = context
        return self.ssl_context

    def upgrade_to_tls(self):
        sock = self._require_socket()
        try:
            self.socket = self._context().wrap_socket(sock, server_hostname=self.host)
        except (ssl.SSLError, OSError) as e:
            raise TransportError(f"TLS negotiation with {self.host}:{self.port} failed - {e}") from e
        self._tls_active = True
        logger.info("TLS active on %s:%s (%s)", self.host, self.port, self.socket.version())

    def is_tls_active(self) -> bool:
        return self._tls_active

    def wrap_data_socket(self, sock):
        # most servers require the data channel to resume the control session
        session = self.socket.session if self._tls_active else None
        try:
            return self._context().wrap_socket(sock, server_hostname=self.host, session=session)
        except (ssl.SSLError, OSError) as e:
            raise TransportError(f"TLS negotiation on data channel failed - {e}") from e

    def peer_address(self):
        return self._require_socket().getpeername()[:2]

    def local_address(self):
        return self._require_socket().getsockname()[:2]
