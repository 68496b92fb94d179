"""
Shared test fixtures and configuration for pytest
"""
import os
from collections import deque
from pathlib import Path

import pytest

from campmail.core.email.models import EmailMessage, SmtpSettings
from campmail.utils.config_manager import ConfigManager
from campmail.utils.errors import SMTPConnectionClosedError, StaleTransportError


class FakeServer:
    """Scripted SMTP server shared by a fake transport and its TLS upgrade.

    Each entry in ``replies`` answers one read. An entry that is an
    exception instance is raised instead of returned.
    """

    def __init__(self, replies, fail_on_write=None):
        self.replies = deque(replies)
        self.fail_on_write = fail_on_write or {}
        self.sent = []
        self.reads = 0
        self.close_calls = 0
        self.upgrades = 0
        self.connected_to = None
        self.log = []

    @property
    def commands(self):
        """Sent lines, with the message payload shown as <message>."""
        result = []
        for line in self.sent:
            if "\r\n" in line:
                result.append("<message>")
            else:
                result.append(line)
        return result


class FakeTransport:
    """In-memory stand-in for SMTPTransport."""

    def __init__(self, server: FakeServer, secure: bool = False):
        self.server = server
        self.secure = secure
        self.retired = False

    def _check(self):
        if self.retired:
            raise StaleTransportError("Plaintext transport used after STARTTLS upgrade")

    async def write_line(self, line):
        self._check()
        index = len(self.server.sent)
        self.server.sent.append(line)
        self.server.log.append(("write", line))
        error = self.server.fail_on_write.get(index)
        if error is not None:
            raise error

    async def read_reply(self):
        self._check()
        self.server.reads += 1
        if not self.server.replies:
            raise SMTPConnectionClosedError("Connection closed by smtp.test")
        reply = self.server.replies.popleft()
        self.server.log.append(("read", reply))
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def start_tls(self, ssl_context=None):
        self._check()
        self.server.upgrades += 1
        self.server.log.append(("tls", None))
        self.retired = True
        return FakeTransport(self.server, secure=True)

    async def close(self):
        self.server.close_calls += 1
        self.server.log.append(("close", None))


@pytest.fixture
def make_server():
    """Factory for a scripted server plus the transport factory that uses it."""

    def _make(replies, fail_on_write=None, connect_error=None):
        server = FakeServer(replies, fail_on_write)

        async def factory(host, port, timeout):
            server.connected_to = (host, port, timeout)
            if connect_error is not None:
                raise connect_error
            return FakeTransport(server)

        return server, factory

    return _make


@pytest.fixture
def smtp_settings():
    """Settings for the submission port (STARTTLS attempted)"""
    return SmtpSettings(
        host="smtp.test",
        port=587,
        username="u",
        password="p",
        from_address="f@test.com",
    )


@pytest.fixture
def plain_settings():
    """Settings for port 25 (no STARTTLS)"""
    return SmtpSettings(
        host="smtp.test",
        port=25,
        username="u",
        password="p",
        from_address="f@test.com",
    )


@pytest.fixture
def email_message():
    """Sample message"""
    return EmailMessage(
        to="r@test.com",
        subject="Hi",
        text="hi",
        html="<p>hi</p>",
    )


@pytest.fixture
def success_replies():
    """Replies for a full successful conversation on port 587"""
    return [
        "220 smtp.test ESMTP ready",
        "250 smtp.test",
        "220 Ready to start TLS",
        "250 smtp.test",
        "334 VXNlcm5hbWU6",
        "250 ignored",
        "235 Authentication successful",
        "250 Sender OK",
        "250 Recipient OK",
        "354 Start mail input",
        "250 Queued",
        "221 Bye",
    ]


@pytest.fixture
def config_manager(tmp_path: Path):
    """Isolated ConfigManager writing to a temporary file"""
    ConfigManager.reset_instance()
    manager = ConfigManager(tmp_path / "config.json")
    yield manager
    ConfigManager.reset_instance()


@pytest.fixture(autouse=True)
def clear_env_vars():
    """Clear config override environment variables before each test"""
    env_vars = [
        'SMTP_HOST', 'SMTP_PORT', 'SMTP_USERNAME',
        'SMTP_PASSWORD', 'SUPPORT_EMAIL', 'APP_URL',
    ]
    original = {}
    for var in env_vars:
        original[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    yield

    # Restore original environment
    for var, value in original.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]


@pytest.fixture(autouse=True)
def reset_logging():
    """Detach handlers installed by init_logging() during a test"""
    yield
    from campmail.utils import logging as log_utils

    if log_utils._log_manager is not None:
        log_utils._log_manager.root_logger.handlers.clear()
        log_utils._log_manager = None
