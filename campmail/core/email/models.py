"""Value objects for a single delivery attempt."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class SmtpSettings:
    """Server connection and credential bundle for one delivery."""

    host: str
    port: int
    username: str
    password: str = field(repr=False)
    from_address: str


@dataclass(frozen=True)
class EmailMessage:
    """Message payload; ``text`` is informational only and not transmitted."""

    to: str
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a delivery attempt."""

    success: bool
    error: Optional[str] = None
    mocked: bool = False

    @classmethod
    def ok(cls, mocked: bool = False) -> "DeliveryResult":
        return cls(success=True, mocked=mocked)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        """Serialise for API responses and logs."""
        result: dict = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        if self.mocked:
            result["mocked"] = True
        return result
