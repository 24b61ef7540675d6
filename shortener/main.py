"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ init_db()   │
    │ manager.    │
    │ initialize()│──▶ hit flush task starts
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ cleanup()   │──▶ final hit flush
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

Key Behaviours
===============
- Store timeouts/outages answer 503 so clients and proxies may retry.
- Code-space exhaustion answers 500; it is an operational alarm.
- Malformed request bodies answer 400 rather than FastAPI's default 422.
- Prometheus metrics are exposed at ``/metrics``.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.exceptions import CodeSpaceExhaustedError, TransientBackendError
from shortener.routes import router

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with cached redirects and write-back hit counting",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Malformed request", "errors": jsonable_errors(exc)})


@app.exception_handler(TransientBackendError)
async def transient_backend_handler(request: Request, exc: TransientBackendError) -> JSONResponse:
    logger.error(f"Backend unavailable on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable", "error": exc.error_code},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(CodeSpaceExhaustedError)
async def code_space_exhausted_handler(request: Request, exc: CodeSpaceExhaustedError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": "Could not allocate a short code", "error": exc.error_code})


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [{"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]} for error in exc.errors()]


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
