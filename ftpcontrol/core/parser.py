import logging
import re
from typing import Callable, List, Optional

from .enums import ResponseType
from .errors import ProtocolViolation

logger = logging.getLogger(__name__)

# Final line of a reply: three digits, one whitespace, message.
# "xyz-" continuation lines and free text never match.
FINAL_LINE = re.compile(r"^(\d{3})\s(.*)$")

INFO = "INFO"


class Response:
    """Reply to the last command: code, message and informational lines."""

    def __init__(self, code: str = None, message: str = None, messages: Optional[List[str]] = None):
        self.code = code
        self.message = message
        self.messages = list(messages) if messages else []

    @property
    def type(self) -> ResponseType:
        if self.code is None:
            return ResponseType.NONE
        return ResponseType(int(self.code[0]))

    @property
    def success(self) -> bool:
        # 1xx, 2xx y 3xx son exito; 4xx y 5xx son fallos
        return self.code is not None and self.code[0] in "123"

    def __repr__(self):
        return f"Response(code={self.code!r}, message={self.message!r}, messages={len(self.messages)})"


class Parser:

    def parse_final_line(self, line: str):
        """Returns (code, message) when ``line`` closes a reply, otherwise None."""
        match = FINAL_LINE.match(line)
        if match is None:
            return None
        code, message = match.groups()
        if code[0] not in "12345":
            logger.error("Invalid FTP reply code: %s", line)
            raise ProtocolViolation(f"Could not determine the response status: {line!r}")
        return code, message

    def read_response(self, read_line: Callable[[], Optional[str]],
                      notify: Callable[[str, str], None] = None) -> Response:
        """
        Reads lines until the final reply line and builds the Response.

        Every line before the final one is reported to ``notify`` as INFO and
        kept in ``Response.messages``; the final line is reported once with its
        code. Running out of input first is a protocol violation.
        """
        messages = []
        while True:
            line = read_line()
            if line is None:
                raise ProtocolViolation("An unknown error occurred while executing the command")

            parsed = self.parse_final_line(line)
            if parsed is not None:
                code, message = parsed
                response = Response(code, message, messages)
                if notify:
                    notify(code, message)
                logger.debug("Parsed response: code=%s, type=%s, message=%s",
                             code, response.type.name, message[:50])
                return response

            if notify:
                notify(INFO, line)
            messages.append(line)

    def parse_pasv_response(self, message: str):
        """Parses the PASV response to extract IP and port."""
        try:
            start = message.index('(') + 1
            end = message.index(')')
            parts = message[start:end].split(',')
            ip = '.'.join(p.strip() for p in parts[:4])
            port = (int(parts[4]) << 8) + int(parts[5])
            logger.debug("PASV parsed: %s:%s", ip, port)
            return ip, port
        except (ValueError, IndexError) as e:
            logger.error("Failed to parse PASV response: %s", message)
            raise ProtocolViolation("Invalid PASV response format") from e

    def parse_epsv_response(self, message: str) -> int:
        """Parses ``(|||port|)`` from an EPSV reply."""
        try:
            start = message.index('(')
            end = message.index(')', start)
            body = message[start + 1:end]
            delimiter = body[0]
            parts = body.split(delimiter)
            if len(parts) != 5 or body[-1] != delimiter:
                raise ValueError("unexpected number of values")
            port = int(parts[3])
            logger.debug("EPSV parsed: port %s", port)
            return port
        except (ValueError, IndexError) as e:
            logger.error("Failed to parse EPSV response: %s", message)
            raise ProtocolViolation("Invalid EPSV response format") from e
