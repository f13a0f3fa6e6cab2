import logging
import threading
from typing import Optional, TextIO

logger = logging.getLogger("ftpcontrol.trace")


class TraceListener:
    """
    Sink for the control channel transcript.

    Every line goes to the ``ftpcontrol.trace`` logger at DEBUG and, when an
    output stream is set, is also written there (one line per entry).
    """

    def __init__(self, output_stream: Optional[TextIO] = None, flush_on_write: bool = False):
        self.output_stream = output_stream
        self.flush_on_write = flush_on_write
        self._lock = threading.Lock()

    def write_line(self, message: str):
        logger.debug(message)
        with self._lock:
            if self.output_stream is None:
                return
            self.output_stream.write(message + "\n")
            if self.flush_on_write:
                self.output_stream.flush()
