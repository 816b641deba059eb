import asyncio
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import ALLOWED_ORIGINS, has_llm_key
from .deps import get_generator, get_store
from .errors import ErrorType, StoreError, StudioError, now_iso
from .llm import ScriptGenerator
from .routes import admin, instant, stories, videos, workflow

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tokyo Shakespeare Studio Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


def _internal_error() -> JSONResponse:
    return JSONResponse(status_code=500, content={
        "error": "Internal server error",
        "type": ErrorType.INTERNAL.value,
        "timestamp": now_iso(),
    })


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    if isinstance(exc, StoreError):
        logger.error(f"Store error on {request.method} {request.url.path}: {exc.message}")
        return _internal_error()
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "code": err["type"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={
        "error": "Invalid request",
        "type": ErrorType.VALIDATION.value,
        "details": details,
        "timestamp": now_iso(),
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _internal_error()


@app.get("/health")
def health(store=Depends(get_store)):
    keys_ok = has_llm_key()
    logger.info(f"Health check: LLM key present = {keys_ok}")
    return {"ok": True, "has_llm_key": keys_ok, "store": store.name}


@app.get("/api/openai/health")
async def openai_health(generator: ScriptGenerator = Depends(get_generator)):
    if not generator.available():
        connection = {"ok": False, "error": "OPENAI_API_KEY is not set"}
    else:
        connection = await asyncio.to_thread(generator.check_connection)
    return {"connection": connection, "metrics": generator.metrics.snapshot(), "timestamp": now_iso()}


app.include_router(stories.router)
app.include_router(workflow.router)
app.include_router(videos.router)
app.include_router(instant.router)
app.include_router(admin.router)
