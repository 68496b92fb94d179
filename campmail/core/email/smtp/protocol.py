"""SMTP delivery state machine.

Pure protocol logic with no I/O. The client feeds each server reply to
``SMTPProtocol.step()`` and performs whatever ``Action`` comes back, so the
command sequence can be exercised without a socket.

    CONNECTING -> GREETED -> EHLO_SENT -> [TLS_NEGOTIATING -> EHLO_RESENT]
    -> AUTH_LOGIN_PROMPTED -> USERNAME_SENT -> PASSWORD_SENT -> AUTHENTICATED
    -> MAIL_FROM_SENT -> RCPT_TO_SENT -> DATA_PROMPTED -> MESSAGE_SENT
    -> QUIT_SENT -> CLOSED

FAILED is reachable from every state and is always followed by CLOSED.

Reply parsing is deliberately minimal: a reply "matches" when it starts with
the expected three-digit code. The replies to the base64 username and to
MAIL FROM are not checked unless ``validate_all_replies`` is set.
"""

import base64
from dataclasses import dataclass
from datetime import datetime
from email.header import Header
from email.utils import format_datetime, formatdate
from enum import Enum
from typing import Optional

from campmail.core.email.models import EmailMessage, SmtpSettings
from campmail.utils.logging import get_logger

from .constants import Commands, SMTPPorts, SMTPResponse

logger = get_logger(__name__)


class SessionState(str, Enum):
    """States of one delivery conversation."""

    CONNECTING = "connecting"
    GREETED = "greeted"
    EHLO_SENT = "ehlo_sent"
    TLS_NEGOTIATING = "tls_negotiating"
    EHLO_RESENT = "ehlo_resent"
    AUTH_LOGIN_PROMPTED = "auth_login_prompted"
    USERNAME_SENT = "username_sent"
    PASSWORD_SENT = "password_sent"
    AUTHENTICATED = "authenticated"
    MAIL_FROM_SENT = "mail_from_sent"
    RCPT_TO_SENT = "rcpt_to_sent"
    DATA_PROMPTED = "data_prompted"
    MESSAGE_SENT = "message_sent"
    QUIT_SENT = "quit_sent"
    CLOSED = "closed"
    FAILED = "failed"


class ActionKind(str, Enum):
    """What the client must do next."""

    SEND = "send"
    UPGRADE_TLS = "upgrade_tls"
    FINISH = "finish"
    FAIL = "fail"


@dataclass(frozen=True)
class Action:
    """Next step for the client.

    Attributes:
        kind: What to do
        line: Line to write (SEND only)
        error: Failure reason (FAIL only)
        sensitive: Line carries credentials and must not be logged verbatim
    """

    kind: ActionKind
    line: str = ""
    error: Optional[str] = None
    sensitive: bool = False

    @classmethod
    def send(cls, line: str, sensitive: bool = False) -> "Action":
        return cls(ActionKind.SEND, line=line, sensitive=sensitive)

    @classmethod
    def fail(cls, error: str) -> "Action":
        return cls(ActionKind.FAIL, error=error)


class FailureReason:
    """Failure reasons reported in DeliveryResult.error."""

    INVALID_GREETING = "Invalid greeting"
    AUTH_LOGIN_FAILED = "AUTH LOGIN failed"
    USERNAME_REJECTED = "Username rejected"
    AUTHENTICATION_FAILED = "Authentication failed"
    SENDER_REJECTED = "Sender rejected"
    RECIPIENT_REJECTED = "Recipient rejected"
    DATA_FAILED = "DATA command failed"
    DELIVERY_FAILED = "Message delivery failed"
    INVALID_HEADER = "Invalid header value"


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _line_break_fields(settings: SmtpSettings, message: EmailMessage) -> list[str]:
    """Names of the single-line fields that contain CR or LF."""
    fields = {
        "host": settings.host,
        "from_address": settings.from_address,
        "to": message.to,
        "subject": message.subject,
    }
    return [name for name, value in fields.items() if "\r" in value or "\n" in value]


def _encode_header(value: str) -> str:
    """RFC 2047-encode a header value when it is not plain ASCII."""
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


def build_message_data(
    settings: SmtpSettings,
    message: EmailMessage,
    date: Optional[datetime] = None,
) -> str:
    """Build the DATA payload: headers, blank line, HTML body, final dot.

    Bare LF line endings are normalised to CRLF and body lines starting with
    a dot are dot-stuffed so they cannot end the DATA phase early.

    Args:
        settings: Supplies the From address
        message: Recipient, subject and HTML body
        date: Value for the Date header (current local time if None)

    Returns:
        The payload without the trailing CRLF (the transport appends it)

    Raises:
        ValueError: If an address or the subject contains a line break
    """
    broken = _line_break_fields(settings, message)
    if broken:
        raise ValueError(f"Line break in header field: {', '.join(broken)}")

    date_header = format_datetime(date) if date else formatdate(localtime=True)

    headers = [
        f"From: {settings.from_address}",
        f"To: {message.to}",
        f"Subject: {_encode_header(message.subject)}",
        "Content-Type: text/html; charset=UTF-8",
        "MIME-Version: 1.0",
        f"Date: {date_header}",
    ]

    body_lines = message.html.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    body_lines = ["." + line if line.startswith(".") else line for line in body_lines]

    return "\r\n".join(headers + [""] + body_lines + ["."])


class SMTPProtocol:
    """State machine for delivering one message over one connection."""

    def __init__(
        self,
        settings: SmtpSettings,
        message: EmailMessage,
        validate_all_replies: bool = False,
    ):
        """Initialise the conversation.

        Args:
            settings: Server and credentials
            message: Message to deliver
            validate_all_replies: Also require 334 after the username and
                250 after MAIL FROM (off by default)
        """
        self.settings = settings
        self.message = message
        self.validate_all_replies = validate_all_replies
        self.state = SessionState.CONNECTING
        self.last_reply: Optional[str] = None
        self.error: Optional[str] = None
        self.message_accepted = False

    @property
    def tls_expected(self) -> bool:
        return SMTPPorts.uses_starttls(self.settings.port)

    @property
    def ehlo(self) -> str:
        return f"{Commands.EHLO} {self.settings.host}"

    def _advance(self, state: SessionState, action: Action) -> Action:
        self.state = state
        return action

    def fail(self, reason: str) -> Action:
        """Move to FAILED and return the matching action."""
        self.state = SessionState.FAILED
        self.error = reason
        return Action.fail(reason)

    def _reject(self, reason: str, reply: str) -> Action:
        return self.fail(f"{reason}: {reply.strip()}")

    def preflight(self) -> Optional[Action]:
        """Check the message before connecting.

        Host, sender, recipient and subject are written as single lines;
        a CR or LF in any of them could end a command or the DATA phase
        early, so such a message is refused.

        Returns:
            FAIL action if the message cannot be sent, otherwise None
        """
        broken = _line_break_fields(self.settings, self.message)
        if broken:
            return self.fail(
                f"{FailureReason.INVALID_HEADER}: line break in {', '.join(broken)}"
            )
        return None

    def close(self) -> None:
        """Mark the conversation closed once the socket is gone."""
        self.state = SessionState.CLOSED

    def tls_established(self) -> Action:
        """Continue after the transport was upgraded: re-issue EHLO."""
        if self.state is not SessionState.TLS_NEGOTIATING:
            return self.fail(f"TLS upgrade reported in state {self.state.value}")
        return self._advance(SessionState.EHLO_RESENT, Action.send(self.ehlo))

    def _authenticate(self) -> Action:
        return self._advance(
            SessionState.AUTH_LOGIN_PROMPTED, Action.send(Commands.AUTH_LOGIN)
        )

    def step(self, reply: str) -> Action:
        """Consume one server reply and decide the next action.

        Args:
            reply: Complete reply text as read from the server

        Returns:
            Action for the client to perform
        """
        self.last_reply = reply
        state = self.state

        if state is SessionState.CONNECTING:
            if not reply.startswith(SMTPResponse.SERVICE_READY):
                return self._reject(FailureReason.INVALID_GREETING, reply)
            self.state = SessionState.GREETED
            return self._advance(SessionState.EHLO_SENT, Action.send(self.ehlo))

        if state is SessionState.EHLO_SENT:
            # Capabilities are not parsed; receiving a reply is enough.
            if self.tls_expected:
                return self._advance(
                    SessionState.TLS_NEGOTIATING, Action.send(Commands.STARTTLS)
                )
            return self._authenticate()

        if state is SessionState.TLS_NEGOTIATING:
            if reply.startswith(SMTPResponse.SERVICE_READY):
                return Action(ActionKind.UPGRADE_TLS)
            logger.warning(
                f"Server {self.settings.host} refused STARTTLS, continuing in cleartext",
                extra={"reply": reply.strip()},
            )
            return self._authenticate()

        if state is SessionState.EHLO_RESENT:
            return self._authenticate()

        if state is SessionState.AUTH_LOGIN_PROMPTED:
            if not reply.startswith(SMTPResponse.AUTH_CONTINUE):
                return self._reject(FailureReason.AUTH_LOGIN_FAILED, reply)
            return self._advance(
                SessionState.USERNAME_SENT,
                Action.send(_b64(self.settings.username), sensitive=True),
            )

        if state is SessionState.USERNAME_SENT:
            if self.validate_all_replies and not reply.startswith(
                SMTPResponse.AUTH_CONTINUE
            ):
                return self._reject(FailureReason.USERNAME_REJECTED, reply)
            return self._advance(
                SessionState.PASSWORD_SENT,
                Action.send(_b64(self.settings.password), sensitive=True),
            )

        if state is SessionState.PASSWORD_SENT:
            if not reply.startswith(SMTPResponse.AUTH_SUCCESS):
                return self._reject(FailureReason.AUTHENTICATION_FAILED, reply)
            self.state = SessionState.AUTHENTICATED
            return self._advance(
                SessionState.MAIL_FROM_SENT,
                Action.send(f"{Commands.MAIL_FROM}:<{self.settings.from_address}>"),
            )

        if state is SessionState.MAIL_FROM_SENT:
            if self.validate_all_replies and not reply.startswith(SMTPResponse.OK):
                return self._reject(FailureReason.SENDER_REJECTED, reply)
            return self._advance(
                SessionState.RCPT_TO_SENT,
                Action.send(f"{Commands.RCPT_TO}:<{self.message.to}>"),
            )

        if state is SessionState.RCPT_TO_SENT:
            if not reply.startswith(SMTPResponse.OK):
                return self._reject(FailureReason.RECIPIENT_REJECTED, reply)
            return self._advance(SessionState.DATA_PROMPTED, Action.send(Commands.DATA))

        if state is SessionState.DATA_PROMPTED:
            if not reply.startswith(SMTPResponse.START_MAIL):
                return self._reject(FailureReason.DATA_FAILED, reply)
            return self._advance(
                SessionState.MESSAGE_SENT,
                Action.send(build_message_data(self.settings, self.message)),
            )

        if state is SessionState.MESSAGE_SENT:
            if not reply.startswith(SMTPResponse.OK):
                return self._reject(FailureReason.DELIVERY_FAILED, reply)
            self.message_accepted = True
            return self._advance(SessionState.QUIT_SENT, Action.send(Commands.QUIT))

        if state is SessionState.QUIT_SENT:
            # The QUIT reply is not validated; delivery already succeeded.
            return Action(ActionKind.FINISH)

        return self.fail(f"Unexpected reply in state {state.value}: {reply.strip()}")
