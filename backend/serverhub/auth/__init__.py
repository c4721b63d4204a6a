# serverhub/auth/__init__.py
from .utils import verify_password, hash_password, create_access_token
from .dependencies import get_current_user, require_operator, oauth2_scheme

__all__ = [
    "verify_password",
    "hash_password",
    "create_access_token",
    "get_current_user",
    "require_operator",
    "oauth2_scheme"
]
