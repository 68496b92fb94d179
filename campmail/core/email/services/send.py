"""Email send service - resolves SMTP settings and hands messages to the client."""

import asyncio
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from campmail.core.email import templates
from campmail.core.email.models import DeliveryResult, EmailMessage, SmtpSettings
from campmail.core.email.smtp.client import SMTPClient
from campmail.core.email.smtp.constants import SMTPPorts
from campmail.utils.config_manager import AppConfig
from campmail.utils.email_utils import validate_email_address
from campmail.utils.errors import InvalidConfigError, format_error_message
from campmail.utils.logging import async_log_call, get_logger

logger = get_logger(__name__)

SETTING_KEYS = (
    "smtp_host",
    "smtp_port",
    "smtp_username",
    "smtp_password",
    "support_email",
)


class SettingsProvider(Protocol):
    """Source of stored SMTP settings (database table, config file, ...)."""

    async def get_many(self, keys: Sequence[str]) -> Dict[str, str]:
        """Return the values found for keys; missing keys are omitted."""
        ...


class StaticSettingsProvider:
    """Settings provider backed by a plain mapping."""

    def __init__(self, values: Mapping[str, Optional[str]]):
        self._values = dict(values)

    async def get_many(self, keys: Sequence[str]) -> Dict[str, str]:
        return {
            key: str(self._values[key])
            for key in keys
            if self._values.get(key) is not None
        }


class ConfigSettingsProvider:
    """Settings provider backed by the application config."""

    def __init__(self, config: AppConfig):
        self._config = config

    async def get_many(self, keys: Sequence[str]) -> Dict[str, str]:
        smtp = self._config.smtp
        values = {
            "smtp_host": smtp.host,
            "smtp_port": str(smtp.port),
            "smtp_username": smtp.username,
            "smtp_password": smtp.password,
            "support_email": smtp.support_email,
        }
        return {key: values[key] for key in keys if key in values}


def resolve_smtp_settings(values: Mapping[str, str]) -> Optional[SmtpSettings]:
    """Build SmtpSettings from stored values.

    Args:
        values: Mapping keyed by SETTING_KEYS

    Returns:
        SmtpSettings, or None when host, username or password is missing

    Raises:
        InvalidConfigError: If the stored port is not a valid port number
    """
    host = (values.get("smtp_host") or "").strip()
    username = (values.get("smtp_username") or "").strip()
    password = values.get("smtp_password") or ""

    if not host or not username or not password:
        return None

    raw_port = (values.get("smtp_port") or "").strip() or str(SMTPPorts.SUBMISSION)
    try:
        port = int(raw_port)
    except ValueError as e:
        raise InvalidConfigError(
            f"SMTP port is not a number: {raw_port!r}", details={"port": raw_port}
        ) from e
    if not 0 < port < 65536:
        raise InvalidConfigError(
            f"SMTP port out of range: {port}", details={"port": port}
        )

    from_address = (values.get("support_email") or "").strip() or username

    return SmtpSettings(
        host=host,
        port=port,
        username=username,
        password=password,
        from_address=from_address,
    )


class EmailSendService:
    """Service for sending camp emails.

    Failures are logged and returned as DeliveryResult; callers decide
    whether to retry, alert or carry on.
    """

    def __init__(
        self,
        settings_provider: SettingsProvider,
        client: Optional[SMTPClient] = None,
        app_url: str = templates.DEFAULT_APP_URL,
    ):
        """Initialise email send service.

        Args:
            settings_provider: Where SMTP settings are read from on each send
            client: SMTPClient to deliver with (default client if None)
            app_url: Base URL used in registration and login links
        """
        self._settings_provider = settings_provider
        self._client = client or SMTPClient()
        self.app_url = app_url

    @classmethod
    def from_config(cls, config: AppConfig) -> "EmailSendService":
        """Create a service wired to the application config."""
        client = SMTPClient(
            timeout=config.smtp.timeout,
            validate_all_replies=config.smtp.validate_all_replies,
        )
        return cls(ConfigSettingsProvider(config), client, app_url=config.app.app_url)

    @property
    def client(self) -> SMTPClient:
        return self._client

    async def _load_settings(self) -> Optional[SmtpSettings]:
        values = await self._settings_provider.get_many(SETTING_KEYS)
        return resolve_smtp_settings(values)

    @async_log_call
    async def send(self, message: EmailMessage) -> DeliveryResult:
        """Send a prepared message.

        When host, username or password are not configured no connection is
        made: the message is logged and reported as a (mocked) success.
        A malformed recipient address fails the send before settings are read,
        and a valid one is sent in its normalised form. Errors while loading
        settings are returned as a failed result.

        Args:
            message: Message to send

        Returns:
            DeliveryResult for the attempt
        """
        recipient, address_error = validate_email_address(message.to)
        if address_error:
            return DeliveryResult.failed(address_error)
        if recipient != message.to:
            message = replace(message, to=recipient)

        try:
            settings = await self._load_settings()
        except InvalidConfigError as e:
            logger.warning(f"Cannot send email, SMTP settings are invalid: {e.message}")
            return DeliveryResult.failed(e.message)
        except Exception as e:
            reason = format_error_message(e)
            logger.warning(f"Cannot send email, SMTP settings could not be loaded: {reason}")
            return DeliveryResult.failed(reason)

        if settings is None:
            logger.warning("Missing SMTP credentials, falling back to mock logs.")
            logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
            return DeliveryResult.ok(mocked=True)

        result = await self._client.deliver(settings, message)

        if not result.success:
            logger.warning(
                "Email was not delivered",
                extra={"recipient": message.to, "error": result.error},
            )

        return result

    async def send_email(
        self, to: str, subject: str, text: str, html: str
    ) -> DeliveryResult:
        """Send an email built from its parts."""
        return await self.send(EmailMessage(to=to, subject=subject, text=text, html=html))

    async def send_registration_invitation(
        self, to: str, guardian_name: str, product_name: str, token: str
    ) -> DeliveryResult:
        message = templates.registration_invitation(
            to, guardian_name, product_name, token, app_url=self.app_url
        )
        return await self.send(message)

    async def send_registration_reminder(
        self, to: str, guardian_name: str, product_name: str, token: str
    ) -> DeliveryResult:
        message = templates.registration_reminder(
            to, guardian_name, product_name, token, app_url=self.app_url
        )
        return await self.send(message)

    async def send_admin_magic_link(self, to: str, token: str) -> DeliveryResult:
        return await self.send(templates.admin_magic_link(to, token, app_url=self.app_url))

    async def send_test_email(self, to: str) -> DeliveryResult:
        return await self.send(templates.smtp_test(to))

    async def send_bulk(
        self, messages: Iterable[EmailMessage], concurrency: int = 5
    ) -> List[DeliveryResult]:
        """Send many messages concurrently, each over its own connection.

        Args:
            messages: Messages to send
            concurrency: Maximum number of open connections at once

        Returns:
            Results in the same order as messages
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        semaphore = asyncio.Semaphore(concurrency)

        async def _send_one(message: EmailMessage) -> DeliveryResult:
            async with semaphore:
                return await self.send(message)

        results = await asyncio.gather(*(_send_one(m) for m in messages))

        failed = sum(1 for result in results if not result.success)
        logger.info(
            f"Bulk send finished: {len(results) - failed} sent, {failed} failed"
        )

        return list(results)
