"""SMTP constants and configuration values."""


class SMTPResponse:
    """Reply codes the delivery state machine checks for."""

    SERVICE_READY = "220"  # Greeting, and ready to start TLS
    CLOSING = "221"  # Service closing transmission channel
    AUTH_SUCCESS = "235"  # Authentication successful
    OK = "250"  # Requested mail action okay, completed
    AUTH_CONTINUE = "334"  # Server challenge (base64 prompt)
    START_MAIL = "354"  # Start mail input; end with <CRLF>.<CRLF>


class Commands:
    """Command verbs sent by the client."""

    EHLO = "EHLO"
    STARTTLS = "STARTTLS"
    AUTH_LOGIN = "AUTH LOGIN"
    MAIL_FROM = "MAIL FROM"
    RCPT_TO = "RCPT TO"
    DATA = "DATA"
    QUIT = "QUIT"


class Timeouts:
    """Timeout values for SMTP operations (in seconds)."""

    SMTP_CONNECT = 30.0  # TCP connect
    SMTP_REPLY = 30.0  # Waiting for any single server reply
    SMTP_STARTTLS = 30.0  # TLS handshake after STARTTLS
    SMTP_CLOSE = 5.0  # Waiting for the socket to close


class SMTPPorts:
    """Standard SMTP port numbers."""

    SUBMISSION = 587  # STARTTLS
    SMTP = 25  # Plain SMTP (server-to-server)

    @classmethod
    def uses_starttls(cls, port: int) -> bool:
        """Check if STARTTLS is attempted on this port.

        Args:
            port: SMTP port number

        Returns:
            True only for the submission port
        """
        return port == cls.SUBMISSION


class Limits:
    """Protocol limits."""

    MAX_REPLY_LINE = 8192  # Bytes per reply line before the read is aborted
    MAX_REPLY_LINES = 100  # Continuation lines collected into one reply
