import abc
import logging
import socket
from typing import Optional

from .enums import Capability, DataChannelType
from .errors import CommandFailure, TransportError

logger = logging.getLogger(__name__)


class DataChannel(abc.ABC):
    """
    Canal de datos de una transferencia.

    Se crea con la conexion de control; ``execute`` negocia el canal (PASV,
    EPSV, PORT o EPRT), envia REST si hubo ``seek`` y luego el comando de
    transferencia. El canal se lee o se escribe, nunca ambas cosas.
    """

    def __init__(self, control, extended: bool = False):
        self.control = control
        self.extended = extended
        self.read_timeout: Optional[float] = None
        self.length = 0
        self.position = 0
        self.data_socket: Optional[socket.socket] = None
        self._transfer_started = False
        self.closed = False

    def set_length(self, length: int):
        """Expected size of the transfer, for progress reporting only."""
        self.length = length

    def seek(self, offset: int):
        """Restart offset, sent as REST before the transfer command."""
        self.position = offset

    @abc.abstractmethod
    def _open(self):
        """Negotiates the data connection before the transfer command."""

    def _accept(self):
        """Hook run once the server accepted the transfer command."""

    def execute(self, command: str) -> bool:
        control = self.control
        with control.locked():
            try:
                self._open()
                if self.position > 0 and not control.execute(f"REST {self.position}"):
                    raise CommandFailure(control.response)
            except Exception:
                self._close_sockets()
                raise

            if not control.execute(command):
                self._close_sockets()
                return False
            self._transfer_started = True

            self._accept()
            if control.tls_active and control.config.data_channel_encryption:
                self.data_socket = control.transport.wrap_data_socket(self.data_socket)
            self.data_socket.settimeout(self.read_timeout)
            logger.debug("Data channel open for %s (expected %s bytes)", command, self.length)
            return True

    # ---------------- lectura / escritura ----------------
    def read(self, size: int = 4096) -> bytes:
        try:
            data = self.data_socket.recv(size)
        except OSError as e:
            raise TransportError(f"Data channel read failed - {e}") from e
        self.position += len(data)
        return data

    def write(self, data: bytes):
        try:
            self.data_socket.sendall(data)
        except OSError as e:
            raise TransportError(f"Data channel write failed - {e}") from e
        self.position += len(data)

    def receive_file(self, local_path: str):
        """
        Recibe un archivo del servidor y lo guarda en local_path.
        """
        with open(local_path, 'wb') as f:
            while True:
                data = self.read(4096)
                if not data:
                    break
                f.write(data)
        logger.info("[DATA] File downloaded to %s", local_path)

    def send_file(self, local_path: str):
        """
        Envía un archivo al servidor.
        """
        with open(local_path, 'rb') as f:
            while chunk := f.read(4096):
                self.write(chunk)
        logger.info("[DATA] File uploaded from %s", local_path)

    # ---------------- cierre ----------------
    def _close_sockets(self):
        if self.data_socket:
            try:
                self.data_socket.close()
            except OSError:
                pass
            self.data_socket = None

    def close(self):
        """
        Cierra la conexion de datos y, si la transferencia empezo, lee la
        respuesta final (226/426) del canal de control.
        """
        if self.closed:
            return
        self.closed = True
        self._close_sockets()
        if self._transfer_started:
            self._transfer_started = False
            if not self.control.read_response():
                logger.warning("Transfer ended with %s %s",
                               self.control.response.code, self.control.response.message)

    def dispose(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PassiveDataChannel(DataChannel):
    """The client connects to an address announced by the server (EPSV/PASV)."""

    def _request_endpoint(self):
        control = self.control
        if self.extended and control.has_capability(Capability.EPSV):
            if control.execute("EPSV"):
                port = control.parser.parse_epsv_response(control.response.message)
                return control.transport.peer_address()[0], port
            logger.info("EPSV rejected (%s), falling back to PASV", control.response.code)
            control.remove_capability(Capability.EPSV)

        if not control.execute("PASV"):
            raise CommandFailure(control.response)
        return control.parser.parse_pasv_response(control.response.message)

    def _open(self):
        control = self.control
        host, port = self._request_endpoint()
        try:
            self.data_socket = socket.create_connection((host, port), timeout=control.config.connect_timeout)
        except OSError as e:
            raise TransportError(f"Failed to open data connection to {host}:{port} - {e}") from e
        logger.debug("[DATA] Connected to %s:%s", host, port)

    def execute(self, command: str) -> bool:
        control = self.control
        with control.locked():
            if control.has_capability(Capability.PRET) and not control.execute(f"PRET {command}"):
                logger.debug("PRET rejected: %s %s", control.response.code, control.response.message)
            return super().execute(command)


class ActiveDataChannel(DataChannel):
    """The server connects back to a port the client listens on (EPRT/PORT)."""

    def __init__(self, control, extended: bool = False):
        super().__init__(control, extended)
        self._listener: Optional[socket.socket] = None

    def _announce(self, host: str, port: int, family: int):
        control = self.control
        if self.extended and control.has_capability(Capability.EPRT):
            protocol = 2 if family == socket.AF_INET6 else 1
            if control.execute(f"EPRT |{protocol}|{host}|{port}|"):
                return
            logger.info("EPRT rejected (%s), falling back to PORT", control.response.code)
            control.remove_capability(Capability.EPRT)

        if family == socket.AF_INET6:
            raise CommandFailure(control.response, "PORT cannot announce an IPv6 address")
        fields = host.split('.') + [str(port >> 8), str(port & 0xFF)]
        if not control.execute("PORT " + ','.join(fields)):
            raise CommandFailure(control.response)

    def _open(self):
        host = self.control.transport.local_address()[0]
        family = socket.AF_INET6 if ':' in host else socket.AF_INET
        try:
            self._listener = socket.socket(family, socket.SOCK_STREAM)
            self._listener.bind((host, 0))
            self._listener.listen(1)
            self._listener.settimeout(self.control.config.connect_timeout)
        except OSError as e:
            raise TransportError(f"Failed to listen for the data connection on {host} - {e}") from e
        port = self._listener.getsockname()[1]
        logger.debug("[DATA] Listening on %s:%s", host, port)
        self._announce(host, port, family)

    def _accept(self):
        try:
            self.data_socket, address = self._listener.accept()
        except OSError as e:
            raise TransportError(f"Server did not open the data connection - {e}") from e
        finally:
            self._close_listener()
        logger.debug("[DATA] Accepted connection from %s", address[0])

    def _close_listener(self):
        if self._listener:
            self._listener.close()
            self._listener = None

    def _close_sockets(self):
        self._close_listener()
        super()._close_sockets()


def create_data_channel(channel_type: DataChannelType, control) -> DataChannel:
    if channel_type.is_passive:
        return PassiveDataChannel(control, extended=channel_type.is_extended)
    return ActiveDataChannel(control, extended=channel_type.is_extended)
