"""
Core of the FTP control channel.
Includes the transport, reply parser, capability registry, session
negotiation, the control connection itself and the data channels.
"""

from .capabilities import CapabilityRegistry
from .config import ConnectionConfig
from .connection import SocketTransport, Transport
from .control import FtpControlConnection, SecurityNotAvailableEvent
from .data_connection import ActiveDataChannel, DataChannel, PassiveDataChannel, create_data_channel
from .enums import (Capability, DataChannelType, DataMode, DataType, FileAccess, ResponseType,
                    SessionState, SslMode)
from .errors import (CommandFailure, ConfigurationError, ControlLockTimeout, FtpError, ProtocolViolation,
                     ResponseTimeout, SecurityNotAvailable, TransportError)
from .parser import Parser, Response
from .trace import TraceListener

__all__ = [
    "ActiveDataChannel",
    "Capability",
    "CapabilityRegistry",
    "CommandFailure",
    "ConfigurationError",
    "ConnectionConfig",
    "ControlLockTimeout",
    "DataChannel",
    "DataChannelType",
    "DataMode",
    "DataType",
    "FileAccess",
    "FtpControlConnection",
    "FtpError",
    "Parser",
    "PassiveDataChannel",
    "ProtocolViolation",
    "Response",
    "ResponseTimeout",
    "ResponseType",
    "SecurityNotAvailable",
    "SecurityNotAvailableEvent",
    "SessionState",
    "SocketTransport",
    "SslMode",
    "TraceListener",
    "Transport",
    "TransportError",
    "create_data_channel",
]
