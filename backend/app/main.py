import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from app.logging_config import RequestIdMiddleware, configure_logging

# Use LOG_LEVEL env var directly here because settings hasn't been imported yet
configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from app.config import settings  # noqa: E402
from app.api.functions import FUNCTIONS_PREFIX, router as functions_router  # noqa: E402
from app.api.jobs import router as jobs_router  # noqa: E402
from app.api.submissions import router as submissions_router  # noqa: E402
from app.database import init_db  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    init_db()
    logger.info("Database initialised")
    yield
    logger.info("Application shutting down")


app = FastAPI(title="Prompt Packager API", lifespan=lifespan)

# Request ID middleware must be added BEFORE CORS so every response carries
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID", "x-worker-key"],
    expose_headers=["X-Request-ID"],
)


def _is_function_path(request: Request) -> bool:
    return request.url.path.startswith(FUNCTIONS_PREFIX)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    # Function callers expect {"error": ...}; the /api routes keep {"detail": ...}
    if _is_function_path(request):
        return JSONResponse(
            {"error": exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )
    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    if _is_function_path(request):
        first = exc.errors()[0] if exc.errors() else {}
        return JSONResponse({"error": first.get("msg", "Invalid request body")}, status_code=400)
    return await request_validation_exception_handler(request, exc)


app.include_router(functions_router)
app.include_router(jobs_router)
app.include_router(submissions_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=int(os.getenv("PORT", settings.port)))
