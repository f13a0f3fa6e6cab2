import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .enums import DataChannelType, SslMode


def _as_bool(value: str) -> bool:
    return value.lower() in ('1', 'true', 'yes')


def _as_optional_float(value: str) -> Optional[float]:
    return float(value) if value.strip() else None


# environment variable -> (field, cast)
_ENV_OVERRIDES = [
    ("FTP_HOST", "host", str),
    ("FTP_PORT", "port", int),
    ("FTP_USERNAME", "username", str),
    ("FTP_PASSWORD", "password", str),
    ("FTP_SSL_MODE", "ssl_mode", lambda v: SslMode(v.lower())),
    ("FTP_SSL_VERIFY", "ssl_verify", _as_bool),
    ("FTP_DATA_CHANNEL_ENCRYPTION", "data_channel_encryption", _as_bool),
    ("FTP_DATA_CHANNEL_TYPE", "data_channel_type", lambda v: DataChannelType(v.lower())),
    ("FTP_ENABLE_PIPELINING", "enable_pipelining", _as_bool),
    ("FTP_KEEP_ALIVE_INTERVAL", "keep_alive_interval", float),
    ("FTP_RESPONSE_READ_TIMEOUT", "response_read_timeout", float),
    ("FTP_DATA_CHANNEL_READ_TIMEOUT", "data_channel_read_timeout", _as_optional_float),
    ("FTP_CONNECT_TIMEOUT", "connect_timeout", float),
    ("FTP_LOCK_TIMEOUT", "lock_timeout", _as_optional_float),
    ("FTP_FALLBACK_ENCODING", "fallback_encoding", str),
]


@dataclass
class ConnectionConfig:
    """
    Settings of one control connection. All timeouts are in seconds.

    - ssl_mode: EXPLICIT negotiates AUTH TLS after the greeting, IMPLICIT
      expects TLS from the first byte.
    - data_channel_encryption: send PBSZ/PROT P once the control channel is
      encrypted.
    - keep_alive_interval: NOOP interval during transfers, 0 disables it.
    - response_read_timeout: 0 waits forever for a reply.
    - fallback_encoding: command encoding until the server accepts OPTS UTF8 ON.
    """
    host: str = "localhost"
    port: int = 21
    username: Optional[str] = None
    password: Optional[str] = None
    ssl_mode: SslMode = SslMode.EXPLICIT
    ssl_verify: bool = True
    data_channel_encryption: bool = True
    data_channel_type: DataChannelType = DataChannelType.EXTENDED_PASSIVE
    enable_pipelining: bool = False
    keep_alive_interval: float = 0
    response_read_timeout: float = 0
    data_channel_read_timeout: Optional[float] = None
    connect_timeout: float = 10.0
    lock_timeout: Optional[float] = None
    fallback_encoding: str = "latin-1"

    def __repr__(self):
        # nunca mostrar la contraseña
        return (f"ConnectionConfig(host={self.host!r}, port={self.port}, username={self.username!r}, "
                f"ssl_mode={self.ssl_mode.value}, data_channel_type={self.data_channel_type.value})")

    @classmethod
    def from_env(cls, **overrides) -> "ConnectionConfig":
        """
        Builds a config from FTP_* environment variables.

        A .env file in the working directory is loaded first. Keyword
        arguments win over the environment.
        """
        load_dotenv(find_dotenv(usecwd=True))

        values = {}
        for env_var, field_name, cast in _ENV_OVERRIDES:
            value = os.getenv(env_var)
            if value is not None:
                values[field_name] = cast(value)
        values.update(overrides)
        return cls(**values)
