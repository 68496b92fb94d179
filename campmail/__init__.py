"""campmail - outbound email delivery for the camp registration system."""

__version__ = "0.1.0"
