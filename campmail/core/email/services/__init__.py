"""Email services that sit between application code and the SMTP client."""

from .send import (
    ConfigSettingsProvider,
    EmailSendService,
    SettingsProvider,
    StaticSettingsProvider,
    resolve_smtp_settings,
)

__all__ = [
    "ConfigSettingsProvider",
    "EmailSendService",
    "SettingsProvider",
    "StaticSettingsProvider",
    "resolve_smtp_settings",
]
