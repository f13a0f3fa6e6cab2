from enum import Enum, IntEnum


class SslMode(Enum):
    NONE = "none"
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class DataChannelType(Enum):
    ACTIVE = "active"
    PASSIVE = "passive"
    EXTENDED_ACTIVE = "extended_active"
    EXTENDED_PASSIVE = "extended_passive"

    @property
    def is_passive(self) -> bool:
        return self in (DataChannelType.PASSIVE, DataChannelType.EXTENDED_PASSIVE)

    @property
    def is_extended(self) -> bool:
        return self in (DataChannelType.EXTENDED_ACTIVE, DataChannelType.EXTENDED_PASSIVE)


class DataType(Enum):
    """Representation type, valued with the argument sent to TYPE."""
    ASCII = "A"
    BINARY = "I"


class DataMode(Enum):
    STREAM = "S"
    BLOCK = "B"


class FileAccess(Enum):
    READ = "read"
    WRITE = "write"
    APPEND = "append"


class ResponseType(IntEnum):
    """Reply class, taken from the first digit of the reply code."""
    NONE = 0
    POSITIVE_PRELIMINARY = 1
    POSITIVE_COMPLETION = 2
    POSITIVE_INTERMEDIATE = 3
    TRANSIENT_NEGATIVE = 4
    PERMANENT_NEGATIVE = 5


class Capability(Enum):
    EPSV = "EPSV"
    EPRT = "EPRT"
    MLST = "MLST"
    MLSD = "MLSD"
    MDTM = "MDTM"
    MDTMDIR = "MDTMDIR"
    REST = "REST"
    SIZE = "SIZE"
    UTF8 = "UTF8"
    PRET = "PRET"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    GREETED = "greeted"
    SECURED = "secured"
    AUTHENTICATED = "authenticated"
    READY = "ready"
