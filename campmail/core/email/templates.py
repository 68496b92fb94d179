"""Message builders for the emails the camp system sends.

Every builder returns an EmailMessage; the HTML is inline-styled because most
mail clients ignore stylesheets. Interpolated values are HTML-escaped.
"""

from html import escape
from urllib.parse import quote

from campmail.core.email.models import EmailMessage

DEFAULT_APP_URL = "http://localhost:3000"

_CARD_STYLE = (
    "font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; "
    "border: 1px solid #e2e8f0; border-radius: 12px;"
)


def _button(url: str, label: str, background: str = "#2563eb") -> str:
    return (
        '<div style="margin: 30px 0; text-align: center;">'
        f'<a href="{escape(url)}" style="background-color: {background}; color: white; '
        "padding: 12px 24px; border-radius: 8px; text-decoration: none; "
        f'font-weight: bold;">{label}</a>'
        "</div>"
    )


def registration_url(app_url: str, token: str) -> str:
    """Link to a player's registration form."""
    return f"{app_url.rstrip('/')}/registration/{quote(token, safe='')}"


def admin_login_url(app_url: str, token: str) -> str:
    """Link that verifies an admin magic-link token."""
    return f"{app_url.rstrip('/')}/api/admin/auth/verify?token={quote(token, safe='')}"


def registration_invitation(
    to: str,
    guardian_name: str,
    product_name: str,
    token: str,
    app_url: str = DEFAULT_APP_URL,
) -> EmailMessage:
    """Invitation sent after a purchase, asking the guardian to register the player."""
    url = registration_url(app_url, token)
    name, product = escape(guardian_name), escape(product_name)

    html = (
        f'<div style="{_CARD_STYLE}">'
        '<h2 style="color: #0f172a;">Welcome to Swedish Camp!</h2>'
        f"<p>Hi <strong>{name}</strong>,</p>"
        f"<p>Thank you for your purchase of <strong>{product}</strong>. "
        "To ensure everything is ready for your player, please complete the "
        "final registration step below:</p>"
        f"{_button(url, 'Complete Registration')}"
        '<p style="color: #64748b; font-size: 14px;">If the button doesn\'t work, '
        f"copy and paste this link: <br/> {escape(url)}</p>"
        "</div>"
    )

    return EmailMessage(
        to=to,
        subject=f"Action Required: Register for {product_name}",
        text=(
            f"Hi {guardian_name},\n\nThank you for your purchase of {product_name}. "
            f"Please complete the player registration form here: {url}"
        ),
        html=html,
    )


def registration_reminder(
    to: str,
    guardian_name: str,
    product_name: str,
    token: str,
    app_url: str = DEFAULT_APP_URL,
) -> EmailMessage:
    """Reminder for a registration that is still incomplete."""
    url = registration_url(app_url, token)
    name, product = escape(guardian_name), escape(product_name)

    html = (
        f'<div style="{_CARD_STYLE}">'
        '<h2 style="color: #0f172a;">Friendly Reminder</h2>'
        f"<p>Hi <strong>{name}</strong>,</p>"
        f"<p>We're looking forward to seeing you at <strong>{product}</strong>! "
        "We noticed your player registration is still incomplete.</p>"
        "<p>Please take a moment to finish it now so we can finalize logistics:</p>"
        f"{_button(url, 'Finish Registration Now')}"
        "</div>"
    )

    return EmailMessage(
        to=to,
        subject=f"Reminder: Complete your {product_name} registration",
        text=(
            f"Hi {guardian_name},\n\nThis is a friendly reminder to complete your "
            f"player registration for {product_name}: {url}"
        ),
        html=html,
    )


def admin_magic_link(
    to: str, token: str, app_url: str = DEFAULT_APP_URL
) -> EmailMessage:
    """Sign-in link for the admin dashboard; the link expires after 15 minutes."""
    url = admin_login_url(app_url, token)

    html = (
        f'<div style="{_CARD_STYLE}">'
        '<h2 style="color: #0f172a;">Swedish Camp Admin Login</h2>'
        "<p>Click the button below to sign in to the Swedish Camp Command "
        "dashboard. This link will expire in 15 minutes.</p>"
        f"{_button(url, 'Sign In to Dashboard', background='#0f172a')}"
        "</div>"
    )

    return EmailMessage(
        to=to,
        subject="Admin Login - Swedish Camp Command",
        text=f"Click the link to log in to the admin dashboard: {url}",
        html=html,
    )


def smtp_test(to: str) -> EmailMessage:
    """Message used to check SMTP settings from the admin screen or CLI."""
    html = (
        '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; '
        'padding: 40px; border: 1px solid #e2e8f0; border-radius: 16px;">'
        '<h2 style="color: #0f172a; margin-top: 0;">SMTP Test Successful!</h2>'
        '<p style="color: #475569; line-height: 1.6;">Your Swedish Camp Command '
        "email infrastructure is live and correctly configured using your camp's "
        "SMTP server.</p>"
        '<hr style="border: 0; border-top: 1px solid #f1f5f9; margin: 24px 0;" />'
        '<p style="color: #94a3b8; font-size: 12px;">Sent from Swedish Camp '
        "Command Infrastructure</p>"
        "</div>"
    )

    return EmailMessage(
        to=to,
        subject="SMTP Configuration Test - Swedish Camp Command",
        text="If you see this, your SMTP configuration is correct and working.",
        html=html,
    )
