import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-.:]{0,63}$")


class IdentifierValidator:
    """Identifiers for books, members, employees, branches, issues and returns.

    Accepts things like 'ISBN-1', 'C101', 'E101', 'IS1': a letter or digit
    followed by up to 63 letters, digits or one of ``_-.:``.
    """

    @staticmethod
    def normalize(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return raw.strip()

    @staticmethod
    def is_valid(identifier: Optional[str]) -> bool:
        if not identifier:
            return False
        return bool(_IDENTIFIER.match(IdentifierValidator.normalize(identifier)))

    @staticmethod
    def require(identifier: Optional[str], kind: str = "identifier") -> str:
        value = IdentifierValidator.normalize(identifier)
        if not IdentifierValidator.is_valid(value):
            raise ValueError(f"Invalid {kind}: '{identifier}'")
        return value


class DateValidator:
    """ISO-8601 calendar dates (YYYY-MM-DD)."""

    @staticmethod
    def parse(raw: Optional[str]) -> Optional[date]:
        if raw is None or not str(raw).strip():
            return None
        try:
            return date.fromisoformat(str(raw).strip())
        except ValueError:
            raise ValueError(f"Invalid date '{raw}', expected YYYY-MM-DD") from None


class MoneyValidator:
    @staticmethod
    def parse(raw, field_name: str = "amount") -> Decimal:
        try:
            value = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid {field_name}: '{raw}'") from None
        if not value.is_finite():
            raise ValueError(f"Invalid {field_name}: '{raw}'")
        if value < 0:
            raise ValueError(f"{field_name.capitalize()} cannot be negative: {raw}")
        return value


class TextValidator:
    """Very basic text validations and sanitization."""

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        if name is None:
            return False
        t = name.strip()
        if not t:
            return False
        # must contain at least one letter
        return any(c.isalpha() for c in t)

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        cleaned = re.sub(r"<[^>]*>", "", text)
        return cleaned.strip()
