import logging

from .enums import Capability, ResponseType, SessionState, SslMode
from .errors import CommandFailure, ConfigurationError, SecurityNotAvailable

logger = logging.getLogger(__name__)


class SessionNegotiator:
    """
    Runs once per physical connection, right after the TCP connect:

        CONNECTED -> GREETED -> SECURED (optional) -> AUTHENTICATED -> READY

    Implicit TLS is set up before the greeting is read; explicit TLS is
    requested after the plaintext greeting and before any credential leaves
    the client. Errors propagate; the caller closes the transport.
    """

    def __init__(self, connection):
        self.connection = connection
        self.config = connection.config

    def run(self):
        conn = self.connection

        if self.config.ssl_mode is SslMode.IMPLICIT:
            conn.transport.upgrade_to_tls()
            conn.state = SessionState.SECURED

        if not conn.read_response():
            raise CommandFailure(conn.response)
        if conn.state is not SessionState.SECURED:
            conn.state = SessionState.GREETED
        logger.info("Greeting: %s %s", conn.response.code, conn.response.message)

        if self.config.ssl_mode is SslMode.EXPLICIT:
            self._negotiate_explicit_tls()

        if conn.transport.is_tls_active() and self.config.data_channel_encryption:
            self._protect_data_channel()

        self.login()
        conn.state = SessionState.READY

    def _negotiate_explicit_tls(self):
        conn = self.connection
        if conn.execute("AUTH TLS") or conn.execute("AUTH SSL"):
            conn.transport.upgrade_to_tls()
            conn.state = SessionState.SECURED
            return

        event = conn.notify_security_not_available()
        if event.cancel:
            raise SecurityNotAvailable(conn.response)
        logger.warning("Server refused AUTH TLS/SSL (%s), continuing without encryption", conn.response.code)

    def _protect_data_channel(self):
        conn = self.connection
        # RFC 4217: PBSZ must precede PROT
        if not conn.execute("PBSZ 0"):
            logger.warning("PBSZ 0 rejected: %s %s", conn.response.code, conn.response.message)
        if not conn.execute("PROT P"):
            raise CommandFailure(conn.response)

    def login(self):
        conn = self.connection
        with conn.locked():
            username = self.config.username
            if username is not None:
                if not conn.execute(f"USER {username}"):
                    raise CommandFailure(conn.response)

                if conn.response.type is ResponseType.POSITIVE_INTERMEDIATE:
                    if self.config.password is None:
                        raise ConfigurationError("The server is asking for a password but it has not been set.")
                    if not conn.execute(f"PASS {self.config.password}"):
                        raise CommandFailure(conn.response)
                logger.info("Logged in as %s", username)
            conn.state = SessionState.AUTHENTICATED

            if not conn.utf8_enabled and conn.has_capability(Capability.UTF8):
                if conn.execute("OPTS UTF8 ON"):
                    conn.utf8_enabled = True
                else:
                    logger.debug("OPTS UTF8 ON rejected, keeping %s", self.config.fallback_encoding)
