import re
import secrets
import string
from datetime import datetime, date
from typing import Optional

CONFIRMATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
CONFIRMATION_CODE_LENGTH = 4

_ORDER_NUMBER_RE = re.compile(r"^DZ-(\d{4})(\d{2})(\d{2})-\d{3}$")


def generate_order_number(now: datetime) -> str:
    """Формат: DZ-YYYYMMDD-NNN"""
    return f"DZ-{now:%Y%m%d}-{secrets.randbelow(1000):03d}"


def parse_order_date(order_number: str) -> Optional[date]:
    match = _ORDER_NUMBER_RE.match(order_number)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def generate_confirmation_code() -> str:
    return "".join(secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(CONFIRMATION_CODE_LENGTH))


def confirmation_code_matches(supplied: Optional[str], expected: str) -> bool:
    """Сравнение без учета регистра"""
    if not supplied:
        return False
    return secrets.compare_digest(supplied.strip().upper().encode(), expected.upper().encode())
