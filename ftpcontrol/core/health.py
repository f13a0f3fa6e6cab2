import time

# Seconds without traffic after which the socket is probed before writing.
IDLE_POLL_THRESHOLD = 30

WRITE_POLL_TIMEOUT = 0.5
DISCONNECT_POLL_TIMEOUT = 0.05


class ActivityMonitor:
    """Tracks the last read/write on the control socket."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._last_activity = None

    def reset(self):
        self._last_activity = None

    @property
    def last_activity(self) -> float:
        # first access after connecting counts as activity
        if self._last_activity is None:
            self._last_activity = self._clock()
        return self._last_activity

    def touch(self):
        self._last_activity = self._clock()

    def needs_poll(self) -> bool:
        return round(self._clock() - self.last_activity) > IDLE_POLL_THRESHOLD


def peer_closed(transport, timeout: float) -> bool:
    """True when the socket reads as ready but has nothing to read: the server hung up."""
    return transport.poll_readable(timeout) and transport.available_bytes() == 0
