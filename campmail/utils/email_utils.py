"""Email utilities for validating addresses"""

from typing import Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from .logging import get_logger, log_call

logger = get_logger(__name__)


@log_call
def validate_email_address(address: str) -> Tuple[Optional[str], Optional[str]]:
    """Validate an email address without DNS lookups.

    Returns:
        (normalized address, None) if valid, otherwise (None, error message)
    """
    if not address or address.strip() == "":
        logger.warning("Email address is required.")
        return None, "Email address is required."

    try:
        valid = validate_email(address, check_deliverability=False)
        return valid.normalized, None
    except EmailNotValidError as e:
        error_msg = f"Invalid email address: {e}"
        logger.error(error_msg)
        return None, error_msg
