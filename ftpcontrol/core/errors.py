class FtpError(Exception):
    """Base para todos los errores del canal de control."""
    pass


class ProtocolViolation(FtpError):
    """The server sent something that is not a valid FTP reply."""
    pass


class ResponseTimeout(FtpError, TimeoutError):
    """No final reply arrived in time. The transport has already been closed."""
    pass


class ConfigurationError(FtpError):
    pass


class ControlLockTimeout(FtpError, TimeoutError):
    pass


class TransportError(FtpError, ConnectionError):
    pass


class CommandFailure(FtpError):
    """
    The server answered a required command with a negative reply.

    The reply that caused the failure is kept in ``response`` so callers can
    decide whether to retry, reconnect or give up.
    """

    def __init__(self, response, message: str = None):
        self.response = response
        if message is None:
            message = f"{response.code} {response.message}"
        super().__init__(message)

    @property
    def code(self):
        return self.response.code


class SecurityNotAvailable(CommandFailure):
    """AUTH TLS and AUTH SSL were both rejected and a listener cancelled the session."""
    pass
