"""
Tests for SMTPClient.deliver()

Tests cover:
- Full conversation with and without STARTTLS
- Command ordering relative to replies
- Every rejection point (greeting, AUTH, password, RCPT, DATA, message)
- Socket faults, timeouts and connect failures
- Socket closed exactly once on every path
- Optional strict reply validation
"""
import asyncio
import base64

import pytest

from campmail.core.email.models import EmailMessage
from campmail.core.email.smtp.client import SMTPClient
from campmail.utils.errors import SMTPConnectionClosedError, SMTPTimeoutError

B64_U = base64.b64encode(b"u").decode()
B64_P = base64.b64encode(b"p").decode()


class TestSuccessfulDelivery:
    """Tests for complete conversations"""

    @pytest.mark.asyncio
    async def test_round_trip_on_submission_port(self, make_server, smtp_settings, email_message, success_replies):
        """Test the scripted 587 conversation returns success"""
        server, factory = make_server(success_replies)
        client = SMTPClient(transport_factory=factory)

        result = await client.deliver(smtp_settings, email_message)

        assert result.success is True
        assert result.error is None
        assert server.commands == [
            "EHLO smtp.test",
            "STARTTLS",
            "EHLO smtp.test",
            "AUTH LOGIN",
            B64_U,
            B64_P,
            "MAIL FROM:<f@test.com>",
            "RCPT TO:<r@test.com>",
            "DATA",
            "<message>",
            "QUIT",
        ]
        assert server.upgrades == 1
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_connects_to_configured_host_and_port(self, make_server, smtp_settings, email_message, success_replies):
        """Test the transport factory receives host, port and timeout"""
        server, factory = make_server(success_replies)
        client = SMTPClient(transport_factory=factory, timeout=12.5)

        await client.deliver(smtp_settings, email_message)

        assert server.connected_to == ("smtp.test", 587, 12.5)

    @pytest.mark.asyncio
    async def test_each_command_follows_a_reply(self, make_server, smtp_settings, email_message, success_replies):
        """Test no command is written before the previous reply was read"""
        server, factory = make_server(success_replies)

        await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        events = [kind for kind, _ in server.log if kind in ("read", "write")]
        # greeting first, then strict write/read alternation
        assert events[0] == "read"
        assert events[1:] == ["write", "read"] * 11

    @pytest.mark.asyncio
    async def test_tls_upgrade_happens_before_second_ehlo(self, make_server, smtp_settings, email_message, success_replies):
        """Test STARTTLS reply, then upgrade, then EHLO on the new transport"""
        server, factory = make_server(success_replies)

        await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        tls_index = server.log.index(("tls", None))
        assert server.log[tls_index - 1] == ("read", "220 Ready to start TLS")
        assert server.log[tls_index + 1] == ("write", "EHLO smtp.test")

    @pytest.mark.asyncio
    async def test_port_25_skips_starttls(self, make_server, plain_settings, email_message):
        """Test STARTTLS is never sent on a port other than 587"""
        replies = [
            "220 ready", "250 ok", "334 VXNlcm5hbWU6", "334 UGFzc3dvcmQ6",
            "235 ok", "250 ok", "250 ok", "354 go", "250 queued", "221 bye",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is True
        assert "STARTTLS" not in server.sent
        assert server.upgrades == 0
        assert server.commands[:2] == ["EHLO smtp.test", "AUTH LOGIN"]

    @pytest.mark.asyncio
    async def test_starttls_refused_continues_in_cleartext(self, make_server, smtp_settings, email_message, caplog):
        """Test a non-220 STARTTLS reply skips the upgrade and the second EHLO"""
        replies = [
            "220 ready", "250 ok", "454 TLS not available", "334 VXNlcm5hbWU6",
            "334 UGFzc3dvcmQ6", "235 ok", "250 ok", "250 ok", "354 go",
            "250 queued", "221 bye",
        ]
        server, factory = make_server(replies)

        with caplog.at_level("WARNING"):
            result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is True
        assert server.upgrades == 0
        assert server.commands[:3] == ["EHLO smtp.test", "STARTTLS", "AUTH LOGIN"]
        assert "refused STARTTLS" in caplog.text

    @pytest.mark.asyncio
    async def test_quit_reply_not_validated(self, make_server, plain_settings, email_message):
        """Test any QUIT reply still counts as success"""
        replies = [
            "220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok",
            "250 ok", "354 go", "250 queued", "500 what",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_connection_lost_after_acceptance_is_success(self, make_server, plain_settings, email_message):
        """Test a dropped connection while waiting for the QUIT reply is ignored"""
        replies = [
            "220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok",
            "250 ok", "354 go", "250 queued",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is True
        assert server.sent[-1] == "QUIT"
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_message_payload_sent_as_one_write(self, make_server, plain_settings, email_message):
        """Test the headers, body and terminating dot go out in a single line write"""
        replies = [
            "220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok",
            "250 ok", "354 go", "250 queued", "221 bye",
        ]
        server, factory = make_server(replies)

        await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        payload = server.sent[7]
        assert payload.startswith("From: f@test.com\r\nTo: r@test.com\r\nSubject: Hi\r\n")
        assert "\r\n\r\n<p>hi</p>\r\n." in payload
        assert payload.endswith("\r\n.")


class TestRejections:
    """Tests for each named failure point"""

    @pytest.mark.asyncio
    async def test_bad_greeting(self, make_server, smtp_settings, email_message):
        """Test a non-220 greeting fails without sending any command"""
        server, factory = make_server(["554 No service"])

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert result.error == "Invalid greeting: 554 No service"
        assert server.sent == []
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_auth_login_rejected(self, make_server, plain_settings, email_message):
        """Test a non-334 AUTH LOGIN reply"""
        server, factory = make_server(["220 ready", "250 ok", "504 Unrecognized authentication type"])

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error.startswith("AUTH LOGIN failed")
        assert server.sent == ["EHLO smtp.test", "AUTH LOGIN"]
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_password_rejected(self, make_server, smtp_settings, email_message):
        """Test a non-235 password reply reports Authentication failed"""
        replies = [
            "220 ready", "250 ok", "220 go ahead", "250 ok", "334 VXNlcm5hbWU6",
            "334 UGFzc3dvcmQ6", "535 5.7.8 Authentication credentials invalid",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert "Authentication failed" in result.error
        assert "535" in result.error
        assert server.sent[-1] == B64_P
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_recipient_rejected(self, make_server, smtp_settings, email_message):
        """Test a 550 RCPT TO reply"""
        replies = [
            "220 ready", "250 ok", "220 go ahead", "250 ok", "334 a", "250 ignored",
            "235 ok", "250 ok", "550 5.1.1 Mailbox unavailable",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert result.error == "Recipient rejected: 550 5.1.1 Mailbox unavailable"
        assert server.sent[-1] == "RCPT TO:<r@test.com>"
        assert "DATA" not in server.sent
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_data_rejected(self, make_server, plain_settings, email_message):
        """Test a non-354 DATA reply"""
        replies = ["220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok", "250 ok", "451 try later"]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error == "DATA command failed: 451 try later"
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_message_rejected(self, make_server, plain_settings, email_message):
        """Test a non-250 reply to the message payload"""
        replies = [
            "220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok",
            "250 ok", "354 go", "552 Message size exceeds limit",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error == "Message delivery failed: 552 Message size exceeds limit"
        assert "QUIT" not in server.sent
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_username_and_mail_from_replies_ignored_by_default(self, make_server, plain_settings, email_message):
        """Test lenient mode proceeds past bad username and MAIL FROM replies"""
        replies = [
            "220 ready", "250 ok", "334 a", "500 odd", "235 ok", "553 odd",
            "250 ok", "354 go", "250 queued", "221 bye",
        ]
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_strict_mode_validates_username_reply(self, make_server, plain_settings, email_message):
        """Test validate_all_replies rejects a non-334 username reply"""
        server, factory = make_server(["220 ready", "250 ok", "334 a", "535 bad user"])
        client = SMTPClient(transport_factory=factory, validate_all_replies=True)

        result = await client.deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error == "Username rejected: 535 bad user"
        assert B64_P not in server.sent

    @pytest.mark.asyncio
    async def test_strict_mode_validates_mail_from_reply(self, make_server, plain_settings, email_message):
        """Test validate_all_replies rejects a non-250 MAIL FROM reply"""
        replies = ["220 ready", "250 ok", "334 a", "334 b", "235 ok", "553 sender not allowed"]
        server, factory = make_server(replies)
        client = SMTPClient(transport_factory=factory, validate_all_replies=True)

        result = await client.deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error == "Sender rejected: 553 sender not allowed"
        assert server.sent[-1] == "MAIL FROM:<f@test.com>"


class TestFaults:
    """Tests for socket-level faults"""

    @pytest.mark.asyncio
    async def test_connect_failure(self, make_server, smtp_settings, email_message):
        """Test a refused connection becomes a failed result"""
        server, factory = make_server([], connect_error=ConnectionRefusedError(111, "Connection refused"))

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert "Connection refused" in result.error
        assert server.close_calls == 0

    @pytest.mark.asyncio
    async def test_server_closes_mid_conversation(self, make_server, smtp_settings, email_message):
        """Test EOF while waiting for a reply"""
        server, factory = make_server(["220 ready", "250 ok", SMTPConnectionClosedError("Connection closed by smtp.test")])

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert result.error == "Connection closed by smtp.test"
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_reply_timeout(self, make_server, plain_settings, email_message):
        """Test a read timeout fails the delivery and still closes"""
        server, factory = make_server(["220 ready", "250 ok", SMTPTimeoutError("No reply from smtp.test within 30s")])

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert "No reply" in result.error
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_write_error(self, make_server, plain_settings, email_message):
        """Test a broken pipe while writing a command"""
        server, factory = make_server(
            ["220 ready", "250 ok"],
            fail_on_write={1: BrokenPipeError(32, "Broken pipe")},
        )

        result = await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert "Broken pipe" in result.error
        assert server.close_calls == 1

    @pytest.mark.parametrize(
        "replies",
        [
            ["421 go away"],
            ["220 ready", "250 ok", "220 tls", "250 ok", "500 no auth"],
            ["220 ready", "250 ok", "220 tls", "250 ok", "334 a", "334 b", "535 no"],
            ["220 ready", "250 ok", "220 tls", "250 ok", "334 a", "334 b", "235 ok", "250 ok", "550 no"],
            ["220 ready", "250 ok", "220 tls", "250 ok", "334 a", "334 b", "235 ok", "250 ok", "250 ok", "503 no"],
            ["220 ready", "250 ok", "220 tls"],
        ],
        ids=["greeting", "auth", "password", "rcpt", "data", "eof-after-tls"],
    )
    @pytest.mark.asyncio
    async def test_close_called_exactly_once(self, make_server, smtp_settings, email_message, replies):
        """Test the transport is closed once wherever the conversation stops"""
        server, factory = make_server(replies)

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, email_message)

        assert result.success is False
        assert server.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_error_is_swallowed(self, make_server, plain_settings, email_message):
        """Test an exception from close() does not change the result"""
        server, factory = make_server(["554 nope"])

        async def broken_factory(host, port, timeout):
            transport = await factory(host, port, timeout)

            async def close():
                server.close_calls += 1
                raise OSError("close failed")

            transport.close = close
            return transport

        result = await SMTPClient(transport_factory=broken_factory).deliver(plain_settings, email_message)

        assert result.success is False
        assert result.error.startswith("Invalid greeting")
        assert server.close_calls == 1


class TestLogging:
    """Tests for protocol logging"""

    @pytest.mark.asyncio
    async def test_credentials_not_logged(self, make_server, plain_settings, email_message, caplog):
        """Test base64 credentials never appear in debug logs"""
        replies = ["220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok", "250 ok", "354 go", "250 queued", "221 bye"]
        server, factory = make_server(replies)

        with caplog.at_level("DEBUG", logger="campmail"):
            await SMTPClient(transport_factory=factory).deliver(plain_settings, email_message)

        assert "[SMTP] > AUTH LOGIN" in caplog.text
        assert f"> {B64_U} " not in caplog.text
        assert f"> {B64_P} " not in caplog.text
        assert "[SMTP] > ****" in caplog.text


class TestConcurrency:
    """Tests for independent concurrent deliveries"""

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_use_separate_connections(self, make_server, plain_settings, email_message):
        """Test gathered deliveries each get their own transport"""
        replies = ["220 ready", "250 ok", "334 a", "334 b", "235 ok", "250 ok", "250 ok", "354 go", "250 queued", "221 bye"]
        servers = []

        async def factory(host, port, timeout):
            server, inner = make_server(list(replies))
            servers.append(server)
            return await inner(host, port, timeout)

        client = SMTPClient(transport_factory=factory)

        results = await asyncio.gather(
            *(client.deliver(plain_settings, email_message) for _ in range(5))
        )

        assert all(result.success for result in results)
        assert len(servers) == 5
        assert all(server.close_calls == 1 for server in servers)


class TestMessageValidation:
    """Tests for messages refused before connecting"""

    @pytest.mark.asyncio
    async def test_subject_with_data_terminator_refused(self, make_server, smtp_settings, success_replies):
        """Test a subject carrying CRLF.CRLF is never written to the server"""
        server, factory = make_server(success_replies)
        message = EmailMessage(
            to="r@test.com", subject="Hi\r\n.\r\nMAIL FROM:<evil@x.com>", text="", html="<p>hi</p>"
        )

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, message)

        assert result.success is False
        assert result.error == "Invalid header value: line break in subject"
        assert server.connected_to is None
        assert server.sent == []

    @pytest.mark.asyncio
    async def test_recipient_with_crlf_refused(self, make_server, smtp_settings, success_replies):
        """Test a recipient cannot smuggle a second RCPT TO"""
        server, factory = make_server(success_replies)
        message = EmailMessage(
            to="r@test.com>\r\nRCPT TO:<evil@x.com", subject="Hi", text="", html="<p>hi</p>"
        )

        result = await SMTPClient(transport_factory=factory).deliver(smtp_settings, message)

        assert result.success is False
        assert result.error == "Invalid header value: line break in to"
        assert not any("RCPT TO" in line for line in server.sent)
        assert server.close_calls == 0
