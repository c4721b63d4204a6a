# serverhub/database/__init__.py
from .pool import ConnectorRegistry, connectors
from . import local_db

__all__ = ["ConnectorRegistry", "connectors", "local_db"]
