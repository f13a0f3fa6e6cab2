"""Shared fixtures: a scripted control transport and a recording data channel."""

import collections
import io
import threading

import pytest

from ftpcontrol.core import ConnectionConfig, FtpControlConnection, SslMode, TraceListener, Transport, TransportError

STANDARD_REPLIES = {
    "USER": ["331 Need password"],
    "PASS": ["230 Logged in"],
    "FEAT": ["211-Features:", " MDTM", " SIZE", " REST STREAM", "211 End"],
    "TYPE": ["200 Type set"],
    "MODE": ["200 Mode set"],
    "NOOP": ["200 NOOP ok"],
    "QUIT": ["221 Goodbye"],
}


class FakeTransport(Transport):
    """
    Control transport that answers each written command from a reply table.

    Replies are looked up by the full command first, then by its verb. A reply
    is a list of lines or a callable taking the command and returning one.
    """

    def __init__(self, replies=None, greeting=("220 Ready",), default_reply="502 Command not implemented"):
        self.replies = dict(STANDARD_REPLIES)
        self.replies.update(replies or {})
        self.greeting = list(greeting)
        self.default_reply = default_reply
        self.incoming = collections.deque()
        self.sent = []
        self.writes = []
        self.events = []
        self.connected = False
        self.tls = False
        self.block_when_empty = False
        self.peer_gone = False
        self.fail_writes = False
        self.connect_count = 0
        self._closed = threading.Event()

    def connect(self, host, port):
        self.connected = True
        self.tls = False
        self.peer_gone = False
        self.connect_count += 1
        self._closed.clear()
        self.events.append(("connect", f"{host}:{port}"))
        self.incoming.extend(self.greeting)

    def disconnect(self):
        self.connected = False
        self.tls = False
        self.incoming.clear()
        self.events.append(("disconnect", None))
        self._closed.set()

    def is_connected(self):
        return self.connected

    def read_line(self):
        while not self.incoming:
            if not self.block_when_empty or not self.connected:
                return None
            self._closed.wait()
        line = self.incoming.popleft()
        self.events.append(("read", line))
        return line.encode("utf-8")

    def read_bytes(self, size):
        return b""

    def write_bytes(self, data):
        if self.fail_writes:
            raise TransportError("broken pipe")
        self.writes.append(data)
        for command in data.decode("utf-8", errors="replace").split("\r\n"):
            if not command:
                continue
            self.sent.append(command)
            self.events.append(("write", command))
            self.incoming.extend(self._reply_for(command))

    def _reply_for(self, command):
        for key in (command, command.split(" ")[0]):
            if key in self.replies:
                reply = self.replies[key]
                return reply(command) if callable(reply) else reply
        return [self.default_reply]

    def poll_readable(self, timeout):
        return self.peer_gone or bool(self.incoming)

    def available_bytes(self):
        return sum(len(line) + 2 for line in self.incoming)

    def upgrade_to_tls(self):
        self.tls = True
        self.events.append(("tls", None))

    def is_tls_active(self):
        return self.tls

    def peer_address(self):
        return ("127.0.0.1", 21)

    def local_address(self):
        return ("127.0.0.1", 0)

    def wrap_data_socket(self, sock):
        return sock


class FakeDataChannel:
    """Records what the control connection asks of a data channel."""

    def __init__(self, channel_type, control):
        self.channel_type = channel_type
        self.control = control
        self.read_timeout = None
        self.length = None
        self.position = 0
        self.commands = []
        self.closed = False

    def set_length(self, length):
        self.length = length

    def seek(self, offset):
        self.position = offset

    def execute(self, command):
        self.commands.append(command)
        return self.control.execute(command)

    def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def trace_stream():
    return io.StringIO()


@pytest.fixture
def make_connection(transport, trace_stream):
    """Builds a plaintext connection for bob/secret over the fake transport."""

    def _make(**overrides):
        settings = dict(host="ftp.example.com", username="bob", password="secret", ssl_mode=SslMode.NONE)
        settings.update(overrides)
        factory = settings.pop("data_channel_factory", None)
        kwargs = {"trace": TraceListener(trace_stream)}
        if factory is not None:
            kwargs["data_channel_factory"] = factory
        return FtpControlConnection(ConnectionConfig(**settings), transport, **kwargs)

    return _make


@pytest.fixture
def fake_channels():
    """Data channel factory that keeps every channel it creates."""
    created = []

    def factory(channel_type, control):
        channel = FakeDataChannel(channel_type, control)
        created.append(channel)
        return channel

    factory.created = created
    return factory
