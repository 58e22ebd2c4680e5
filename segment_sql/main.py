import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from segment_sql.api.routes import segments
from segment_sql.core.config import get_settings
from segment_sql.core.errors import SegmentQueryError
from segment_sql.core.logging import configure_logging

configure_logging()
logger = logging.getLogger("segment_sql.api")

app = FastAPI(title="Segment SQL API", version="0.1.0")


@app.middleware("http")
async def request_timeout_middleware(request: Request, call_next):
    # Keep this above LLM_TIMEOUT_SEC plus the DB statement timeout.
    timeout_sec = max(1, int(get_settings().api_request_timeout_sec))
    try:
        return await asyncio.wait_for(call_next(request), timeout=timeout_sec)
    except asyncio.TimeoutError:
        return JSONResponse(
            status_code=504,
            content={"ok": False, "error": f"Request timeout after {timeout_sec}s"},
        )


@app.exception_handler(SegmentQueryError)
async def segment_query_error_handler(request: Request, exc: SegmentQueryError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=422,
        content={"ok": False, "error": "; ".join(messages) or "Invalid request"},
    )


origins = [
    origin.strip()
    for origin in get_settings().cors_allow_origins.split(",")
    if origin.strip()
]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}

app.include_router(segments.router, prefix="/segments", tags=["segments"])
