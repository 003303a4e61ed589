from enum import Enum


class PaymentStatus(str, Enum):
    """Closed set of payment statuses stored and returned by the service."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def normalize(cls, value: "str | PaymentStatus | None") -> "PaymentStatus":
        """Map a raw provider/client status string onto the enumeration."""
        if isinstance(value, cls):
            return value
        raw = (value or "").strip().upper().replace("_", "").replace(" ", "")
        return _STATUS_ALIASES.get(raw, cls.UNKNOWN)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_STATUS_ALIASES = {
    "PENDING": PaymentStatus.PENDING,
    "SENTTOVENDOR": PaymentStatus.PENDING,
    "PROCESSING": PaymentStatus.PENDING,
    "SUCCESS": PaymentStatus.SUCCESS,
    "SUCCESSFUL": PaymentStatus.SUCCESS,
    "SUCCEEDED": PaymentStatus.SUCCESS,
    "FAILED": PaymentStatus.FAILED,
    "FAILURE": PaymentStatus.FAILED,
    "DECLINED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "CANCELED": PaymentStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset(
    {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
)

# Statuses an administrator may set by hand
ADMIN_SETTABLE_STATUSES = (
    PaymentStatus.SUCCESS,
    PaymentStatus.FAILED,
    PaymentStatus.PENDING,
    PaymentStatus.CANCELLED,
)

TRANSACTION_ID_PREFIX = "TXN_"
TRANSACTION_ID_PATTERN = r"^TXN_\d{13}_[0-9a-z]{9}$"

EMAIL_PATTERN = r"^[^@]+@[^@]+\.[^@]+$"

# Payer input limits
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
MAX_NAME_LENGTH = 100
MAX_COMPETITION_ID_LENGTH = 50
