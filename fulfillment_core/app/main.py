import os
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import create_db_and_tables
from .logging_setup import setup_logging
from .auth import router as auth_router
from .routers.orders import router as orders_router
from .routers.dispatch import router as dispatch_router
from .routers.pre_commissioning import router as pre_commissioning_router
from .routers.commissioning import router as commissioning_router
from .routers.warranty import router as warranty_router
from .services.errors import (
    LifecycleError, ValidationError, ConflictError, NotFoundError, BatchError,
)

logger = logging.getLogger(__name__)


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


def error_status(exc: LifecycleError) -> int:
    if isinstance(exc, BatchError):
        return error_status(exc.cause)
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, ValidationError):
        return 422
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LifecycleError)
    async def _lifecycle_exc(req: Request, exc: LifecycleError):
        status_code = error_status(exc)
        content = {
            "detail": exc.message,
            "error": type(exc).__name__,
            "entity_id": exc.entity_id,
        }
        if isinstance(exc, BatchError):
            content["cause"] = exc.cause_type
            content["item_id"] = exc.item_id
        logger.info("%s %s -> %s %s", req.method, req.url.path, status_code, exc.message)
        return JSONResponse(status_code=status_code, content=content)


def register_routes(app: FastAPI) -> None:
    """The complete routing table of the service."""
    app.include_router(auth_router)
    app.include_router(orders_router)
    app.include_router(dispatch_router)
    app.include_router(pre_commissioning_router)
    app.include_router(commissioning_router)
    app.include_router(warranty_router)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Purchase-Order Lifecycle Back Office",
        description="Dispatch, documentation, delivery, commissioning and warranty tracking per purchase order",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    register_routes(app)

    @app.on_event("startup")
    def on_startup():
        setup_logging()
        create_db_and_tables()
        logger.info("lifecycle back office ready")

    return app


app = create_app()
