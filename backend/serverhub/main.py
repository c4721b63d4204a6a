# serverhub/main.py
from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from serverhub.api import (
    auth_router, servers_router, domains_router, ssh_accounts_router, health_router, logs_router,
)
from serverhub.config import settings, LOG_FORMAT
from serverhub.database import connectors, local_db
from serverhub.exceptions import RegistryError, ExecutionFailedError, ValidationError
from serverhub.services.ssh import connection_cache

logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

# Код ошибки реестра -> HTTP статус
ERROR_STATUS = {
    "not-exists": 404,
    "multiple": 409,
    "validation": 400,
    "invalid": 400,
    "not-specified": 400,
    "missing-data": 422,
    "access-denied": 403,
    "host-verification-failed": 502,
    "failed": 502,
    "failed-connect": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await local_db.init_pool()
    logger.info("serverhub запущен")
    yield
    connection_cache.close_all()
    connectors.close_all()
    await local_db.close_pool()
    logger.info("serverhub остановлен")


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title="serverhub", version="3.0.0", lifespan=lifespan if use_lifespan else None)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        status_code = ERROR_STATUS.get(exc.code, 500)
        content = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, ValidationError):
            content["errors"] = exc.errors
        if isinstance(exc, ExecutionFailedError):
            content["output"] = exc.output
            content["exit_code"] = exc.exit_code
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.code}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path}: {exc.code}: {exc.message}")
        return JSONResponse(status_code=status_code, content=content)

    app.include_router(auth_router)
    app.include_router(health_router)
    app.include_router(servers_router)
    app.include_router(domains_router)
    app.include_router(ssh_accounts_router)
    app.include_router(logs_router)
    return app


app = create_app()
