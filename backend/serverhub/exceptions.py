# serverhub/exceptions.py
"""
Типизированные ошибки реестра серверов.

У каждой ошибки есть строковый code, по которому API выбирает HTTP-статус,
а вызывающий код отличает "не найдено" от "найдено несколько" и т.д.
Первопричина пристёгивается через `raise ... from e`.
"""


class RegistryError(Exception):
    code = "unknown"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotSpecifiedError(RegistryError):
    code = "not-specified"


class NotFoundError(RegistryError):
    code = "not-exists"


class InvalidError(RegistryError):
    code = "invalid"


class AmbiguousError(RegistryError):
    code = "multiple"


class MissingCredentialsError(RegistryError):
    code = "missing-data"


class AccessDeniedError(RegistryError):
    code = "access-denied"


class HostVerificationError(RegistryError):
    code = "host-verification-failed"


class UnknownError(RegistryError):
    code = "unknown"


class ExecutionFailedError(RegistryError):
    code = "failed"

    def __init__(self, message: str, output: list[str] | None = None,
                 exit_code: int | None = None, code: str | None = None):
        super().__init__(message, code)
        self.output = output or []
        self.exit_code = exit_code


class ValidationError(RegistryError):
    """Все найденные проблемы записи сразу, а не только первая"""
    code = "validation"

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)
