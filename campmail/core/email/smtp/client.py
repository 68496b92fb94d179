"""SMTP client - delivers one message per connection."""

from typing import Awaitable, Callable, Optional

from campmail.core.email.models import DeliveryResult, EmailMessage, SmtpSettings
from campmail.utils.errors import format_error_message
from campmail.utils.logging import async_log_call, get_logger

from .constants import Timeouts
from .protocol import Action, ActionKind, SessionState, SMTPProtocol
from .transport import SMTPTransport

logger = get_logger(__name__)

TransportFactory = Callable[[str, int, float], Awaitable[SMTPTransport]]

_MASKED = "****"


class SMTPClient:
    """Async SMTP client for one-shot deliveries.

    Each ``deliver()`` call opens its own connection, runs the whole
    conversation and closes the socket, so the client holds no state
    between calls and can be shared by concurrent callers.

    Usage:
        >>> client = SMTPClient()
        >>> result = await client.deliver(settings, message)
        >>> if not result.success:
        ...     print(result.error)
    """

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        timeout: float = Timeouts.SMTP_REPLY,
        validate_all_replies: bool = False,
    ):
        """Initialise SMTP client.

        Args:
            transport_factory: Coroutine function (host, port, timeout) that
                returns a connected transport; opens a TCP connection if None
            timeout: Seconds to wait for each server reply
            validate_all_replies: Also check the replies to the username
                line and to MAIL FROM
        """
        self._transport_factory = transport_factory or SMTPTransport.open
        self.timeout = timeout
        self.validate_all_replies = validate_all_replies

    @async_log_call
    async def deliver(
        self, settings: SmtpSettings, message: EmailMessage
    ) -> DeliveryResult:
        """Deliver one message.

        Never raises: every failure becomes ``DeliveryResult(success=False)``.

        Args:
            settings: Server connection and credentials
            message: Message to send

        Returns:
            DeliveryResult for the attempt
        """
        protocol = SMTPProtocol(
            settings, message, validate_all_replies=self.validate_all_replies
        )
        transport: Optional[SMTPTransport] = None

        refused = protocol.preflight()
        if refused is not None:
            logger.error(
                f"SMTP delivery refused: {refused.error}",
                extra={"recipient": message.to},
            )
            protocol.close()
            return DeliveryResult.failed(refused.error or "Invalid message")

        logger.info(
            f"Attempting SMTP delivery via {settings.host}:{settings.port}",
            extra={"recipient": message.to},
        )

        try:
            transport = await self._transport_factory(
                settings.host, settings.port, self.timeout
            )
            greeting = await transport.read_reply()
            logger.debug(f"[SMTP] Connect: {greeting.strip()}")

            action = protocol.step(greeting)
            while True:
                if action.kind is ActionKind.SEND:
                    reply = await self._exchange(transport, action)
                    action = protocol.step(reply)

                elif action.kind is ActionKind.UPGRADE_TLS:
                    transport = await transport.start_tls()
                    action = protocol.tls_established()

                elif action.kind is ActionKind.FINISH:
                    logger.info(
                        "Email delivered", extra={"recipient": message.to}
                    )
                    return DeliveryResult.ok()

                else:
                    logger.error(
                        f"SMTP delivery failed: {action.error}",
                        extra={"recipient": message.to},
                    )
                    return DeliveryResult.failed(action.error or "Unknown SMTP error")

        except Exception as e:
            if protocol.message_accepted:
                logger.warning(
                    f"Error after message was accepted, ignoring: {e}",
                    extra={"recipient": message.to},
                )
                return DeliveryResult.ok()

            reason = format_error_message(e)
            protocol.fail(reason)
            logger.error(
                f"SMTP error in state {protocol.state.value}: {reason}",
                extra={"recipient": message.to},
            )
            return DeliveryResult.failed(reason)

        finally:
            if transport is not None:
                await self._close(transport)
            protocol.close()

    async def _exchange(self, transport: SMTPTransport, action: Action) -> str:
        """Write one command and read its reply."""
        await transport.write_line(action.line)
        reply = await transport.read_reply()

        shown = _MASKED if action.sensitive else action.line
        if "\r\n" in shown:
            shown = f"<{len(action.line)} bytes of message data>"
        logger.debug(f"[SMTP] > {shown} | < {reply.strip()}")

        return reply

    async def _close(self, transport: SMTPTransport) -> None:
        """Close the transport; never lets a close error escape."""
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing SMTP transport: {e}")


async def deliver(
    settings: SmtpSettings,
    message: EmailMessage,
    timeout: float = Timeouts.SMTP_REPLY,
) -> DeliveryResult:
    """Deliver one message with a default client.

    Args:
        settings: Server connection and credentials
        message: Message to send
        timeout: Seconds to wait for each server reply

    Returns:
        DeliveryResult for the attempt
    """
    return await SMTPClient(timeout=timeout).deliver(settings, message)
