"""
Maiat — Trust Scoring Service

Paid trust reports for autonomous agents (x402), review submission with
on-chain verification, and an auditable attestation log.

Start with:
    uvicorn maiat.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from maiat import __version__
from maiat.api.reviews import reviews_router
from maiat.api.trust import trust_router
from maiat.config import Settings, get_settings
from maiat.errors import MaiatError
from maiat.services import Services, build_services

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.services.settings
    logger.info("platform_starting", version=__version__, environment=settings.ENVIRONMENT)

    if settings.STORE_BACKEND == "neo4j":
        try:
            from maiat.db.neo4j import init_schema
            init_schema()
        except Exception as e:
            logger.warning("neo4j_init_failed", error=str(e))
    elif settings.SEED_DEMO_DATA:
        from maiat.seed import seed_demo_projects
        await seed_demo_projects(app.state.services.store)

    yield

    await app.state.services.store.close()
    if settings.STORE_BACKEND == "neo4j":
        from maiat.db.neo4j import close
        close()
    logger.info("platform_stopped")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())

    app = FastAPI(
        title="Maiat — Trust Scoring for Agents",
        description=(
            "Trust scores for on-chain projects, AI agents and merchants, "
            "paid per query over x402 micropayments."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Response-Time", "Retry-After"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        start = time.time()
        request.state.request_id = request_id
        response = await call_next(request)
        duration_ms = round((time.time() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        if request.url.path != "/health":
            logger.info("request",
                        method=request.method,
                        path=request.url.path,
                        status=response.status_code,
                        duration_ms=duration_ms,
                        request_id=request_id)
        return response

    @app.exception_handler(MaiatError)
    async def maiat_error_handler(request: Request, exc: MaiatError):
        if exc.status_code >= 500:
            logger.warning("request_degraded", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": "Invalid request body",
                "details": [
                    {"field": ".".join(str(p) for p in e.get("loc", [])), "message": e.get("msg")}
                    for e in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception",
                     path=request.url.path,
                     error=str(exc),
                     type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "Something went wrong.",
                "request_id": getattr(request.state, "request_id", "unknown"),
            },
        )

    app.include_router(trust_router)
    app.include_router(reviews_router)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "maiat-trust",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/")
    async def root():
        return {
            "name": "Maiat",
            "tagline": "Trust scores for the agent economy",
            "version": __version__,
            "endpoints": {
                "trust_report": "GET /trust/{slug} (x402)",
                "submit_review": "POST /reviews",
                "verify_review": "POST /reviews/{id}/verify (x402)",
                "payment_log": "GET /x402/log",
                "attestations": "GET /attestations/{segment}/verify",
                "health": "GET /health",
            },
        }

    return app


app = create_app()
