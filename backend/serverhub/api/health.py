# serverhub/api/health.py
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import logging
from serverhub.models.user import User
from serverhub.auth import get_current_user
from serverhub.database import connectors
from serverhub.services.ssh import connection_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/connectors/status")
async def get_connectors_status(current_user: User = Depends(get_current_user)):
    """Статус коннекторов и их пулов"""
    return connectors.get_status()


@router.get("/health")
async def health_check():
    """Проверка состояния API"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "connectors_count": len(connectors.connectors),
        "ssh_persistent_connections": len(connection_cache),
    }


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return JSONResponse(status_code=404, content={"message": "Not Found"})
