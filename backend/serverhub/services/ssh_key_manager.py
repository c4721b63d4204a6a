# serverhub/services/ssh_key_manager.py
import io
import logging
import paramiko
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ed25519
import hashlib
import base64
from serverhub.database.repositories import ssh_account_repo
from serverhub.exceptions import InvalidError
from serverhub.models import SSHAccountCreate
from serverhub.services import seo

logger = logging.getLogger(__name__)

_KEY_CLASSES = [paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey]


class SSHKeyManager:
    """Ключи SSH-аккаунтов: генерация, проверка, отпечатки"""

    @staticmethod
    def generate_ssh_key_pair(key_type: str = "ed25519", key_size: int = 4096) -> tuple[str, str, str]:
        """
        Генерирует пару SSH-ключей

        Returns:
            Tuple[private_key, public_key, fingerprint]
        """
        if key_type.lower() == "rsa":
            private_key_obj = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        elif key_type.lower() == "ed25519":
            private_key_obj = ed25519.Ed25519PrivateKey.generate()
        else:
            raise InvalidError(f"Неподдерживаемый тип ключа: {key_type}")

        private_key = private_key_obj.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption()
        ).decode('utf-8')

        public_key = private_key_obj.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH
        ).decode('utf-8')

        fingerprint = SSHKeyManager.calculate_fingerprint(public_key)
        logger.info(f"Сгенерирована пара SSH-ключей типа {key_type}")
        return private_key, public_key, fingerprint

    @staticmethod
    def load_private_key(private_key_content: str) -> paramiko.PKey | None:
        """Ключ paramiko из текста; None, если формат не распознан"""
        for key_class in _KEY_CLASSES:
            try:
                return key_class.from_private_key(io.StringIO(private_key_content))
            except paramiko.PasswordRequiredException:
                raise
            except (paramiko.SSHException, ValueError):
                continue
        return None

    @staticmethod
    def validate_private_key(private_key_content: str) -> tuple[bool, str | None, str | None]:
        """
        Валидирует приватный SSH-ключ

        Returns:
            Tuple[is_valid, error_message, fingerprint]
        """
        try:
            key = SSHKeyManager.load_private_key(private_key_content)
        except paramiko.PasswordRequiredException:
            return False, "Ключ защищен паролем, ключи с паролем не поддерживаются", None

        if not key:
            return False, "Не удалось распознать тип ключа или неверный формат", None

        public_key = f"{key.get_name()} {key.get_base64()}"
        return True, None, SSHKeyManager.calculate_fingerprint(public_key)

    @staticmethod
    def calculate_fingerprint(public_key: str) -> str:
        """SHA256 fingerprint публичного ключа в формате OpenSSH ("SHA256:base64")"""
        parts = public_key.strip().split()
        if len(parts) < 2:
            raise InvalidError("Неверный формат публичного ключа")

        digest = hashlib.sha256(base64.b64decode(parts[1])).digest()
        return "SHA256:" + base64.b64encode(digest).decode('utf-8').rstrip('=')


async def create_account(data: SSHAccountCreate) -> tuple[dict, str | None]:
    """
    Создать SSH-аккаунт. Если ключ не передан, генерируется новая пара.

    Returns:
        Tuple[account, public_key] - public_key только для сгенерированного ключа
    """
    public_key = None
    if data.ssh_key:
        is_valid, error, fingerprint = SSHKeyManager.validate_private_key(data.ssh_key)
        if not is_valid:
            raise InvalidError(error)
        private_key = data.ssh_key
    else:
        private_key, public_key, fingerprint = SSHKeyManager.generate_ssh_key_pair(data.key_type)

    seoname = await seo.seo_unique(data.name, ssh_account_repo.seoname_exists)
    account = await ssh_account_repo.create_account(
        name=data.name,
        seoname=seoname,
        username=data.username,
        ssh_key=private_key,
        fingerprint=fingerprint,
        description=data.description,
    )
    return account, public_key
