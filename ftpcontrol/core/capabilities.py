import logging
import threading
from typing import Iterable, Optional, Set

from .enums import Capability

logger = logging.getLogger(__name__)

# Checked in order; the first keyword found in a FEAT line wins.
_FEATURE_KEYWORDS = [
    (("MLST", "MLSD"), {Capability.MLST, Capability.MLSD}),
    (("MDTM",), {Capability.MDTM, Capability.MDTMDIR}),
    (("REST STREAM",), {Capability.REST}),
    (("SIZE",), {Capability.SIZE}),
    (("UTF8",), {Capability.UTF8}),
    (("PRET",), {Capability.PRET}),
]


def parse_features(lines: Iterable[str]) -> Set[Capability]:
    """
    Builds the capability set from the informational lines of a FEAT reply.

    EPSV and EPRT are always included; the data channels revoke them when
    the server refuses them.
    """
    caps = {Capability.EPSV, Capability.EPRT}
    for line in lines:
        feature = line.upper()
        for keywords, flags in _FEATURE_KEYWORDS:
            if any(keyword in feature for keyword in keywords):
                caps |= flags
                break
    return caps


class CapabilityRegistry:
    """
    Features advertised by the server on the current connection.

    ``None`` means not loaded yet; an empty set means the server advertises
    nothing (FEAT failed).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._caps: Optional[Set[Capability]] = None

    @property
    def loaded(self) -> bool:
        return self._caps is not None

    def reset(self):
        with self._lock:
            self._caps = None

    def load(self, connection):
        """Issues FEAT on ``connection`` and caches the result."""
        if connection.execute("FEAT"):
            caps = parse_features(connection.response.messages)
        else:
            logger.info("FEAT rejected (%s), assuming no optional features", connection.response.code)
            caps = set()
        with self._lock:
            self._caps = caps
        logger.debug("Server capabilities: %s", sorted(c.value for c in caps))

    def has(self, capability: Capability) -> bool:
        with self._lock:
            return self._caps is not None and capability in self._caps

    def remove(self, capability: Capability):
        with self._lock:
            if self._caps is not None:
                self._caps.discard(capability)
