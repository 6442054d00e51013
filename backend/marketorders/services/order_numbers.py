"""Human-readable order numbers: PREFIX-<base36 epoch millis>-<5 random>."""
import secrets
import string
from datetime import datetime

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(now: datetime, prefix: str = "ORD") -> str:
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"{prefix}-{to_base36(millis)}-{suffix}".upper()
