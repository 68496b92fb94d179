"""Line-oriented SMTP transport over asyncio streams.

The transport knows nothing about SMTP semantics: it writes CRLF-terminated
lines and reads one server reply at a time. STARTTLS is modelled as a type
transition: ``SMTPTransport.start_tls()`` returns a ``SecureTransport`` bound
to the same socket and retires the plaintext wrapper, so a stale reference
cannot keep talking in cleartext.
"""

import asyncio
import ssl
from typing import Optional

from campmail.utils.errors import (
    SMTPConnectionClosedError,
    SMTPError,
    SMTPTimeoutError,
    StaleTransportError,
)
from campmail.utils.logging import get_logger

from .constants import Limits, Timeouts

logger = get_logger(__name__)

CRLF = "\r\n"


class SMTPTransport:
    """Plaintext SMTP line transport."""

    secure = False

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        timeout: float = Timeouts.SMTP_REPLY,
    ):
        """Wrap an open stream pair.

        Args:
            reader: Stream the server's replies arrive on
            writer: Stream commands are written to
            host: Server hostname (used for TLS SNI and certificate checks)
            timeout: Seconds to wait for each reply
        """
        self._reader = reader
        self._writer = writer
        self.host = host
        self.timeout = timeout
        self._retired = False
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        timeout: float = Timeouts.SMTP_REPLY,
    ) -> "SMTPTransport":
        """Open a TCP connection to host:port.

        Raises:
            SMTPTimeoutError: If the connection is not established in time
            OSError: For DNS failures and refused connections
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=Limits.MAX_REPLY_LINE),
                timeout=Timeouts.SMTP_CONNECT,
            )
        except asyncio.TimeoutError as e:
            raise SMTPTimeoutError(
                f"Timed out connecting to {host}:{port}",
                details={"host": host, "port": port},
            ) from e

        logger.debug(f"Connected to {host}:{port}")
        return cls(reader, writer, host, timeout)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _check_usable(self) -> None:
        if self._retired:
            raise StaleTransportError(
                "Plaintext transport used after STARTTLS upgrade"
            )
        if self._closed:
            raise SMTPConnectionClosedError("Transport is closed")

    async def write_line(self, line: str) -> None:
        """Send one line (or a pre-joined block) followed by CRLF, as one write."""
        self._check_usable()
        self._writer.write((line + CRLF).encode("utf-8"))
        await self._writer.drain()

    async def read_reply(self) -> str:
        """Read one complete server reply.

        Continuation lines (``250-...``) are collected until the final line
        (``250 ...``) so the next command's reply is never read early.

        Returns:
            Reply text with lines joined by CRLF, trailing CRLF stripped

        Raises:
            SMTPTimeoutError: If no complete reply arrives within the timeout
            SMTPConnectionClosedError: If the server closes the connection
        """
        self._check_usable()
        try:
            return await asyncio.wait_for(self._read_lines(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SMTPTimeoutError(
                f"No reply from {self.host} within {self.timeout:g}s"
            ) from e

    async def _read_lines(self) -> str:
        lines = []
        while len(lines) < Limits.MAX_REPLY_LINES:
            try:
                raw = await self._reader.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                raise SMTPError(f"Reply line from {self.host} is too long") from e

            if not raw:
                raise SMTPConnectionClosedError(
                    f"Connection closed by {self.host}",
                    details={"partial_reply": CRLF.join(lines)},
                )

            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            lines.append(line)

            if len(line) < 4 or line[3] != "-":
                break

        return CRLF.join(lines)

    async def start_tls(
        self, ssl_context: Optional[ssl.SSLContext] = None
    ) -> "SecureTransport":
        """Upgrade this connection to TLS in place.

        After this call the plaintext wrapper is retired; only the returned
        SecureTransport may be used.

        Args:
            ssl_context: Context for the handshake (system defaults if None)

        Returns:
            SecureTransport bound to the same socket
        """
        self._check_usable()
        context = ssl_context or ssl.create_default_context()

        try:
            await asyncio.wait_for(
                self._writer.start_tls(context, server_hostname=self.host),
                timeout=Timeouts.SMTP_STARTTLS,
            )
        except asyncio.TimeoutError as e:
            raise SMTPTimeoutError(f"TLS handshake with {self.host} timed out") from e

        self._retired = True
        logger.debug(f"Connection to {self.host} upgraded to TLS")
        return SecureTransport(self._reader, self._writer, self.host, self.timeout)

    async def close(self) -> None:
        """Close the underlying socket, swallowing close-time errors."""
        if self._closed:
            return
        self._closed = True

        try:
            self._writer.close()
            await asyncio.wait_for(
                self._writer.wait_closed(), timeout=Timeouts.SMTP_CLOSE
            )
        except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
            logger.debug(f"Ignoring error while closing connection to {self.host}: {e}")


class SecureTransport(SMTPTransport):
    """SMTP line transport over an upgraded TLS channel."""

    secure = True

    async def start_tls(
        self, ssl_context: Optional[ssl.SSLContext] = None
    ) -> "SecureTransport":
        raise SMTPError("Connection is already encrypted")
