"""Outbound email handling.

This package provides:
- models: SmtpSettings, EmailMessage and DeliveryResult value objects
- smtp: Raw-socket SMTP client (STARTTLS, AUTH LOGIN, DATA)
- templates: Invitation, reminder, admin login and test messages
- services: EmailSendService, which resolves settings and falls back to
  mock delivery when credentials are missing

Usage Examples
----------------

Send a templated email:
    >>> from campmail.core.email.services import EmailSendService, StaticSettingsProvider
    >>>
    >>> service = EmailSendService(StaticSettingsProvider({
    ...     "smtp_host": "smtp.example.com",
    ...     "smtp_username": "camp@example.com",
    ...     "smtp_password": "secret",
    ... }))
    >>> result = await service.send_registration_reminder(
    ...     to="guardian@example.com",
    ...     guardian_name="Alex",
    ...     product_name="Summer Camp",
    ...     token="abc123",
    ... )

Notes
-----
- All delivery operations are asynchronous and require 'await'
- One message per connection; no pooling and no retries
- Delivery never raises; check DeliveryResult.success
"""

from .models import DeliveryResult, EmailMessage, SmtpSettings
from .smtp import SMTPClient

__all__ = [
    "DeliveryResult",
    "EmailMessage",
    "SMTPClient",
    "SmtpSettings",
]
