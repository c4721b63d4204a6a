# serverhub/database/repositories/__init__.py
from . import (
    server_repo,
    proxy_repo,
    domain_repo,
    ssh_account_repo,
    reference_repo,
    fingerprint_repo,
    user_repo,
)

__all__ = [
    "server_repo",
    "proxy_repo",
    "domain_repo",
    "ssh_account_repo",
    "reference_repo",
    "fingerprint_repo",
    "user_repo",
]
