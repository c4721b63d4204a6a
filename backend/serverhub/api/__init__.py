# serverhub/api/__init__.py
from .auth import router as auth_router
from .servers import router as servers_router
from .domains import router as domains_router
from .ssh_accounts import router as ssh_accounts_router
from .health import router as health_router
from .logs import router as logs_router

__all__ = [
    "auth_router", "servers_router", "domains_router",
    "ssh_accounts_router", "health_router", "logs_router",
]
