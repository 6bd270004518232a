import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import psycopg2
import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from registration_api import __version__
from registration_api.config import ServiceConfig, load_config
from registration_api.db import DatabasePool, describe_error
from registration_api.exceptions import (
    EXCEPTION_HANDLERS,
    MissingFieldsError,
    RegistrationFailedError,
    SchemaBootstrapError,
    unhandled_exception_handler,
)
from registration_api.schemas import ErrorResponse, HealthStatus, RegistrationRequest, RegistrationResponse

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Service health checks."},
    {"name": "Registration", "description": "User registration."},
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# PUBLIC_INTERFACE
def get_pool(request: Request) -> DatabasePool:
    """Return the connection pool held in the application state."""
    return request.app.state.pool


router = APIRouter()
health_router = APIRouter()


@health_router.get(
    "/api/healthcheck",
    response_model=HealthStatus,
    response_model_exclude_none=True,
    responses={500: {"model": HealthStatus}},
    tags=["Health"],
    summary="Health check",
)
def health_check(pool: DatabasePool = Depends(get_pool)):
    """Verify that the database answers SELECT 1."""
    try:
        pool.healthcheck()
    except Exception as e:
        logger.error(f"Health check failed: {describe_error(e, pool.config)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "unhealthy", "error": str(e).strip()},
        )
    return {"status": "healthy"}


@router.post(
    "/register",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Registration"],
    summary="Register a user",
)
def register(payload: RegistrationRequest, pool: DatabasePool = Depends(get_pool)) -> Dict[str, Any]:
    """Store a full name and mobile number and return the new user id."""
    if not payload.full_name or not payload.mobile_number:
        raise MissingFieldsError()

    try:
        row = pool.execute_returning_one(
            "INSERT INTO users (full_name, mobile_number) VALUES (%s, %s) RETURNING id",
            [payload.full_name, payload.mobile_number],
        )
    except psycopg2.Error as e:
        logger.error(f"Registration error: {describe_error(e, pool.config)}")
        raise RegistrationFailedError(str(e).strip()) from e

    return {"message": "Registration successful", "userId": row["id"]}


# PUBLIC_INTERFACE
def create_app(config: Optional[ServiceConfig] = None, pool: Optional[DatabasePool] = None) -> FastAPI:
    """Build the FastAPI application.

    A pool passed in is used as-is and left open on shutdown; otherwise one is
    built from ``config`` during startup and closed when the app stops.
    """
    if config is None:
        config = load_config()
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_pool = app.state.pool is None
        if owns_pool:
            app.state.pool = DatabasePool(config.database)
        db_pool: DatabasePool = app.state.pool

        # psycopg2 blocks; keep the event loop free while the server answers.
        await run_in_threadpool(db_pool.check_connectivity)
        if not await run_in_threadpool(db_pool.ensure_schema):
            if config.schema_bootstrap_strict:
                if owns_pool:
                    db_pool.close()
                raise SchemaBootstrapError("Could not create the users table")
            logger.warning("Continuing without a confirmed users table.")

        logger.info("Registration API started")
        yield

        if owns_pool:
            db_pool.close()
        logger.info("Registration API stopped")

    app = FastAPI(
        title="Registration API",
        description="Accepts user registrations (full name and mobile number) and stores them.",
        version=__version__,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.pool = pool

    for exception_type, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_type, handler)

    # Registered before CORS so it runs inside it: fallback 500s still get CORS headers.
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await unhandled_exception_handler(request, exc)
        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
        return response

    # Any origin may call the API; credentials are never forwarded.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    if config.healthcheck_enabled:
        app.include_router(health_router)
    app.include_router(router)
    return app


# PUBLIC_INTERFACE
def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    load_dotenv()
    uvicorn.run(
        "registration_api.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
