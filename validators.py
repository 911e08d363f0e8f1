import re
from typing import Optional

from pydantic import EmailStr, TypeAdapter, ValidationError

class ISBNValidator:
    """ISBN checks used when registering or editing a book.

    Hyphens and spaces are stripped; what remains must be 10-20 characters
    of digits with an optional trailing 'X'.
    """

    MIN_LENGTH = 10
    MAX_LENGTH = 20

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[\s-]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if not ISBNValidator.MIN_LENGTH <= len(s) <= ISBNValidator.MAX_LENGTH:
            return False
        body = s[:-1] if s.endswith("X") else s
        return body.isdigit()

class TextValidator:
    """Basic text validations and sanitization."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not text.strip()

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        # must contain something other than digits
        if TextValidator.is_blank(name):
            return False
        return not name.strip().isdigit()

    @staticmethod
    def sanitize(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return re.sub(r"\s+", " ", text).strip()

class EmailValidator:
    """Email syntax checks delegated to pydantic's ``EmailStr``."""

    _ADAPTER = TypeAdapter(EmailStr)

    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        return (raw or "").strip().lower()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        try:
            EmailValidator._ADAPTER.validate_python(EmailValidator.normalize_email(email))
        except ValidationError:
            return False
        return True
