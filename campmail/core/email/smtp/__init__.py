"""SMTP protocol implementation.

Low-level SMTP components for outbound delivery:
- SMTPTransport / SecureTransport: CRLF line I/O over asyncio streams
- SMTPProtocol: Pure state machine, one transition per server reply
- SMTPClient: Drives the state machine over a transport, one message per
  connection

For templated camp emails and the missing-credentials fallback, use
EmailSendService from the services layer.

Architecture
------------
- SMTPTransport: Connect, write a line, read one reply, STARTTLS upgrade, close
- SMTPProtocol: EHLO, STARTTLS (port 587 only), AUTH LOGIN, MAIL FROM,
  RCPT TO, DATA, QUIT
- SMTPClient: Converts every fault into a DeliveryResult and always closes
  the socket

Direct Usage
------------
    >>> from campmail.core.email.models import EmailMessage, SmtpSettings
    >>> from campmail.core.email.smtp import SMTPClient
    >>>
    >>> settings = SmtpSettings(
    ...     host="smtp.example.com",
    ...     port=587,
    ...     username="camp@example.com",
    ...     password="secret",
    ...     from_address="camp@example.com",
    ... )
    >>> message = EmailMessage(
    ...     to="guardian@example.com",
    ...     subject="Hello",
    ...     text="Hello",
    ...     html="<p>Hello</p>",
    ... )
    >>> result = await SMTPClient().deliver(settings, message)
    >>> result.success
    True
"""

from .client import SMTPClient, deliver
from .protocol import Action, ActionKind, SessionState, SMTPProtocol, build_message_data
from .transport import SecureTransport, SMTPTransport

__all__ = [
    "Action",
    "ActionKind",
    "SMTPClient",
    "SMTPProtocol",
    "SMTPTransport",
    "SecureTransport",
    "SessionState",
    "build_message_data",
    "deliver",
]
