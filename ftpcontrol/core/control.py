import concurrent.futures
import logging
import re
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

from .capabilities import CapabilityRegistry
from .config import ConnectionConfig
from .connection import SocketTransport, Transport
from .data_connection import create_data_channel
from .enums import Capability, DataMode, DataType, FileAccess, ResponseType, SessionState
from .errors import CommandFailure, ControlLockTimeout, FtpError, ResponseTimeout, TransportError
from .health import DISCONNECT_POLL_TIMEOUT, WRITE_POLL_TIMEOUT, ActivityMonitor, peer_closed
from .negotiation import SessionNegotiator
from .parser import Parser, Response
from .trace import TraceListener

logger = logging.getLogger(__name__)

_TRANSFER_COMMANDS = {
    FileAccess.READ: "RETR",
    FileAccess.WRITE: "STOR",
    FileAccess.APPEND: "APPE",
}

_DIGITS = re.compile(r"(\d+)")


class SecurityNotAvailableEvent:
    """Passed to security listeners when the server refuses AUTH TLS and AUTH SSL."""

    def __init__(self, connection):
        self.connection = connection
        self.cancel = False


class FtpControlConnection:
    """
    Control channel of an FTP session.

    Sends commands, reads replies, negotiates TLS and login on every physical
    connection and opens data channels for transfers. Every command/reply pair
    runs under a reentrant control lock; callers that chain several commands
    hold ``locked()`` around the whole sequence.
    """

    def __init__(self, config: ConnectionConfig = None, transport: Transport = None,
                 data_channel_factory: Callable = create_data_channel, trace: TraceListener = None):
        self.config = config or ConnectionConfig()
        self.transport = transport or SocketTransport(timeout=self.config.connect_timeout,
                                                      ssl_verify=self.config.ssl_verify)
        self.data_channel_factory = data_channel_factory
        self.trace = trace or TraceListener()
        self.parser = Parser()

        # Lock para serializar los comandos por la conexion de control
        self._control_lock = threading.RLock()
        self._reader: Optional[concurrent.futures.ThreadPoolExecutor] = None

        self.capabilities = CapabilityRegistry()
        self.activity = ActivityMonitor()
        self.response = Response()
        self.current_data_type: Optional[DataType] = None
        self.utf8_enabled = False
        self.state = SessionState.DISCONNECTED

        self.log_message: Optional[Callable[[str], str]] = None
        self._response_listeners = []
        self._security_listeners = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ---------------- listeners ----------------
    def add_response_listener(self, callback: Callable[[str, str], None]):
        """``callback(status, message)`` for every line received; status is the code or INFO."""
        self._response_listeners.append(callback)

    def remove_response_listener(self, callback):
        self._response_listeners.remove(callback)

    def add_security_listener(self, callback: Callable[[SecurityNotAvailableEvent], None]):
        self._security_listeners.append(callback)

    def remove_security_listener(self, callback):
        self._security_listeners.remove(callback)

    def _on_response_received(self, status: str, message: str):
        for callback in list(self._response_listeners):
            callback(status, message)

    def notify_security_not_available(self) -> SecurityNotAvailableEvent:
        event = SecurityNotAvailableEvent(self)
        for callback in list(self._security_listeners):
            callback(event)
        return event

    def write_line_to_log(self, message: str):
        if self.log_message is not None:
            message = self.log_message(message)
        self.trace.write_line(message)

    # ---------------- estado ----------------
    @property
    def connected(self) -> bool:
        return self.transport.is_connected()

    @property
    def tls_active(self) -> bool:
        return self.connected and self.transport.is_tls_active()

    @property
    def encoding(self) -> str:
        return "utf-8" if self.utf8_enabled else self.config.fallback_encoding

    @property
    def response_type(self) -> ResponseType:
        return self.response.type

    @property
    def response_code(self) -> Optional[str]:
        return self.response.code

    @property
    def response_message(self) -> Optional[str]:
        return self.response.message

    @property
    def messages(self) -> List[str]:
        return self.response.messages

    @property
    def response_status(self) -> bool:
        return self.response.success

    @contextmanager
    def locked(self, timeout: Optional[float] = None):
        """Exclusive hold on the control channel, reentrant for the owning thread."""
        if timeout is None:
            timeout = self.config.lock_timeout
        acquired = self._control_lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise ControlLockTimeout(f"Could not lock the control connection within {timeout}s")
        try:
            yield self
        finally:
            self._control_lock.release()

    # ---------------- conexion ----------------
    def connect(self, host: str = None, port: int = None):
        """Opens the control connection and runs the greeting/TLS/login sequence."""
        with self.locked():
            if self.connected:
                return
            if host is not None:
                self.config.host = host
            if port is not None:
                self.config.port = port

            self.transport.connect(self.config.host, self.config.port)
            self.state = SessionState.CONNECTED
            # a reconnect on an existing object must rediscover everything
            self.capabilities.reset()
            self.utf8_enabled = False
            self.current_data_type = None
            self.activity.reset()

            try:
                SessionNegotiator(self).run()
            except FtpError:
                self._close_transport()
                raise
            logger.info("Session ready on %s:%s", self.config.host, self.config.port)

    def reconnect(self):
        with self.locked():
            self._close_transport()
            self.connect()

    def disconnect(self):
        """Sends QUIT if the server is still there and closes the connection. Never raises."""
        with self.locked():
            if self.connected:
                try:
                    already_closed = peer_closed(self.transport, DISCONNECT_POLL_TIMEOUT)
                    if not already_closed and not self.execute("QUIT"):
                        logger.debug("QUIT rejected: %s %s", self.response.code, self.response.message)
                except FtpError as e:
                    logger.debug("Ignoring error while sending QUIT: %s", e)
            self._close_transport()

    def close(self):
        self.disconnect()
        if self._reader is not None:
            self._reader.shutdown(wait=False)
            self._reader = None

    def _close_transport(self):
        self.transport.disconnect()
        self.state = SessionState.DISCONNECTED

    # ---------------- lectura ----------------
    def _read_line(self) -> Optional[str]:
        timeout = self.config.response_read_timeout
        if timeout and timeout > 0:
            if self._reader is None:
                self._reader = concurrent.futures.ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="ftp-control-reader")
            future = self._reader.submit(self.transport.read_line)
            try:
                raw = future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                # half-read reply: the channel cannot be trusted anymore
                self._close_transport()
                raise ResponseTimeout("Timed out waiting for the server to respond to the last command.")
        else:
            raw = self.transport.read_line()

        if raw is None:
            return None
        line = raw.decode(self.encoding, errors="replace")
        self.write_line_to_log(f"> {line}")
        self.activity.touch()
        return line

    def read_response(self) -> bool:
        """Reads the next reply into ``response``. Only call it when a reply is pending."""
        with self.locked():
            self.response = Response()
            self.response = self.parser.read_response(self._read_line, self._on_response_received)
            return self.response.success

    # ---------------- escritura ----------------
    def _write(self, payload: bytes):
        if not self.connected:
            raise TransportError("The control connection is closed. Are we connected?")
        if self.activity.needs_poll() and peer_closed(self.transport, WRITE_POLL_TIMEOUT):
            logger.info("Server closed the idle control connection, reconnecting")
            self.reconnect()
        self.transport.write_bytes(payload)
        self.activity.touch()

    def _encode_command(self, command: str) -> bytes:
        if command.upper().startswith("PASS"):
            self.write_line_to_log("< PASS [omitted for security]")
        else:
            self.write_line_to_log(f"< {command}")
        return f"{command}\r\n".encode(self.encoding, errors="replace")

    def execute(self, command: str) -> bool:
        """Sends ``command`` and reads its reply; the reply is left in ``response``."""
        with self.locked():
            if not self.connected:
                self.connect()
            self._write(self._encode_command(command))
            return self.read_response()

    def execute_pipeline(self, commands: List[str]) -> List[Response]:
        """
        Runs several commands and returns their replies in order.

        With ``enable_pipelining`` all commands go out in one write before the
        first reply is read; otherwise each command waits for its reply.
        """
        with self.locked():
            if not self.config.enable_pipelining:
                responses = []
                for command in commands:
                    self.execute(command)
                    responses.append(self.response)
                return responses

            if not self.connected:
                self.connect()
            self._write(b"".join(self._encode_command(command) for command in commands))
            responses = []
            for _ in commands:
                self.read_response()
                responses.append(self.response)
            return responses

    # ---------------- capacidades ----------------
    def has_capability(self, capability: Capability) -> bool:
        with self.locked():
            if not self.connected:
                self.connect()
            if not self.capabilities.loaded:
                self.capabilities.load(self)
            return self.capabilities.has(capability)

    def remove_capability(self, capability: Capability):
        with self.locked():
            if not self.capabilities.loaded and self.connected:
                self.capabilities.load(self)
            self.capabilities.remove(capability)
        logger.info("Capability %s removed for this connection", capability.value)

    # ---------------- tipo / modo de datos ----------------
    def set_data_type(self, data_type: DataType):
        with self.locked():
            if self.current_data_type is data_type:
                return
            if not self.execute(f"TYPE {data_type.value}"):
                raise CommandFailure(self.response)
            self.current_data_type = data_type

    def set_data_mode(self, mode: DataMode):
        if mode is DataMode.BLOCK:
            raise FtpError("Block mode transfers have not and will not be implemented.")
        with self.locked():
            if not self.execute(f"MODE {mode.value}"):
                raise CommandFailure(self.response)

    def get_file_size(self, path: str) -> int:
        """
        Size of ``path`` on the server, or 0.

        Returns 0 without sending anything when SIZE is not advertised, and 0
        when the server rejects the query or the reply has no number.
        """
        if not self.has_capability(Capability.SIZE):
            return 0
        with self.locked():
            try:
                self.set_data_type(DataType.BINARY)
            except CommandFailure as e:
                logger.warning("Could not switch to binary before SIZE %s: %s", path, e)
                return 0
            if not self.execute(f"SIZE {path}"):
                return 0
            match = _DIGITS.search(self.response.message or "")
            return int(match.group(1)) if match else 0

    # ---------------- canal de datos ----------------
    def open_data_stream(self, data_type: DataType = DataType.BINARY, mode: DataMode = None):
        """Binds the representation type (and mode) and builds the configured data channel."""
        with self.locked():
            self.set_data_type(data_type)
            if mode is not None:
                self.set_data_mode(mode)
            stream = self.data_channel_factory(self.config.data_channel_type, self)
            stream.read_timeout = self.config.data_channel_read_timeout
            return stream

    def open_file(self, path: str, access: FileAccess = FileAccess.READ,
                  data_type: DataType = DataType.BINARY, offset: int = 0):
        """
        Opens ``path`` for reading, writing or appending through a data channel.

        ``offset`` restarts the transfer at that position for READ and WRITE and
        is ignored for APPEND. The returned channel is either readable or
        writable, never both; close it to collect the transfer reply.
        """
        command = f"{_TRANSFER_COMMANDS[access]} {path}"
        with self.locked():
            # SIZE switches to binary, so ask before binding the requested type
            length = self.get_file_size(path)
            stream = self.open_data_stream(data_type)
            stream.set_length(length)
            if access in (FileAccess.READ, FileAccess.WRITE) and offset > 0:
                stream.seek(offset)

            try:
                ok = stream.execute(command)
            except FtpError:
                stream.close()
                raise
            if not ok:
                stream.close()
                raise CommandFailure(self.response)
            return stream
