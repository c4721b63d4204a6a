# serverhub/services/validation.py
"""
Накопительный валидатор: проверки не бросают исключение сразу,
а складывают ошибки, и is_valid() выбрасывает их все одним ValidationError.
"""
import ipaddress
import re
import logging
from serverhub.exceptions import ValidationError

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))*\.?$",
    re.IGNORECASE,
)


def is_domain(value) -> bool:
    """Формат доменного имени (без проверки DNS)"""
    return isinstance(value, str) and bool(_DOMAIN_RE.match(value))


def is_ip(value) -> bool:
    try:
        ipaddress.ip_address(str(value))
        return True
    except ValueError:
        return False


class Validator:
    def __init__(self):
        self.errors: list[str] = []

    def set_error(self, message: str):
        logger.debug(f"Ошибка валидации: {message}")
        self.errors.append(message)

    def is_not_empty(self, value, message: str) -> bool:
        if value in (None, "", [], {}):
            self.set_error(message)
            return False
        return True

    def is_domain(self, value, message: str) -> bool:
        if not is_domain(value):
            self.set_error(message)
            return False
        return True

    def is_ip(self, value, message: str) -> bool:
        if not is_ip(value):
            self.set_error(message)
            return False
        return True

    def has_min_chars(self, value: str, length: int, message: str) -> bool:
        if len(value or "") < length:
            self.set_error(message)
            return False
        return True

    def has_max_chars(self, value: str, length: int, message: str) -> bool:
        if len(value or "") > length:
            self.set_error(message)
            return False
        return True

    def is_scalar(self, value, message: str, allow_empty: bool = True) -> bool:
        if value is None and allow_empty:
            return True
        if not isinstance(value, (str, int, float, bool)):
            self.set_error(message)
            return False
        return True

    def is_password(self, value, message: str) -> bool:
        """Минимум 8 символов, буквы в обоих регистрах и цифры"""
        value = value or ""
        strong = (
            len(value) >= 8
            and re.search(r"[a-z]", value)
            and re.search(r"[A-Z]", value)
            and re.search(r"\d", value)
        )
        if not strong:
            self.set_error(message)
            return False
        return True

    def is_valid(self) -> bool:
        if self.errors:
            raise ValidationError(self.errors)
        return True
