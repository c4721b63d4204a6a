# serverhub/services/identity.py
"""
Хранилище временных identity-файлов.

Приватный ключ SSH-аккаунта выкладывается на диск только на время одного
удалённого вызова: каталог 0700, файл 0600 на время записи и 0400 после.
Python не гарантирует затирание строки в памяти (сборщик мусора может
переместить объект), поэтому затирается только bytearray, через который ключ
пишется на диск, а ссылка в записи сервера перезаписывается случайными данными.
"""
import os
import secrets
import logging
from pathlib import Path
from serverhub.config import settings
from serverhub.exceptions import NotSpecifiedError, InvalidError

logger = logging.getLogger(__name__)


def _get(server, field):
    if isinstance(server, dict):
        return server.get(field)
    return getattr(server, field, None)


def _set(server, field, value):
    if isinstance(server, dict):
        server[field] = value
    else:
        setattr(server, field, value)


class IdentityVault:
    def __init__(self, keys_dir: Path | str | None = None):
        self.keys_dir = Path(keys_dir or settings.ssh_keys_dir)

    def _ensure_dirs(self):
        self.keys_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self.keys_dir, 0o700)
        os.chmod(self.keys_dir.parent, 0o700)

    def create_identity_file(self, server) -> str:
        """Записать ssh_key сервера во временный файл и вернуть путь"""
        ssh_key = _get(server, "ssh_key")
        if not ssh_key:
            raise NotSpecifiedError("Указанный сервер не содержит ssh_key")

        self._ensure_dirs()

        # 8 hex-символов; при коллизии пробуем другое имя
        while True:
            path = self.keys_dir / secrets.token_hex(4)
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                break
            except FileExistsError:
                continue

        data = bytearray(ssh_key.encode() if isinstance(ssh_key, str) else ssh_key)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(path, 0o400)
        except Exception:
            # недописанный файл не должен остаться на диске
            logger.error(f"Не удалось записать identity-файл {path.name}, файл удаляется")
            try:
                os.chmod(path, 0o600)
            except OSError:
                pass
            path.unlink(missing_ok=True)
            raise
        finally:
            for i in range(len(data)):
                data[i] = 0

        self.clear_key(server)
        logger.debug(f"Создан identity-файл {path.name}")
        return str(path)

    def clear_key(self, server) -> bool:
        """Убрать ключ из записи сервера. False, если ключа не было"""
        ssh_key = _get(server, "ssh_key")
        if not ssh_key:
            return False
        _set(server, "ssh_key", secrets.token_bytes(2048))
        _set(server, "ssh_key", None)
        return True

    def remove_identity_file(self, identity_file) -> bool:
        """Удалить identity-файл. False, если путь не передан"""
        if not identity_file:
            return False

        path = Path(identity_file)
        if not path.is_absolute():
            path = self.keys_dir / path

        if path.resolve().parent != self.keys_dir.resolve():
            raise InvalidError(f"Файл {identity_file} находится вне каталога ключей")

        if path.exists():
            os.chmod(path, 0o600)
            path.unlink()
            logger.debug(f"Удалён identity-файл {path.name}")
        return True


vault = IdentityVault()
