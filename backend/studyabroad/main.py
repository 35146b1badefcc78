"""FastAPI application entrypoint.

Controllers live in `routes/` and stay thin: they accept requests,
delegate to services and return JSON. This module wires them together
with CORS, request logging and the service-error handler.

Run locally with `uvicorn studyabroad.main:app --reload` from `backend/`.
"""

import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .config import settings
from .database import create_db_and_tables
from .errors import ServiceError
from .routes import admin, appointments, auth, cms, courses, notifications, payments, tests

app = FastAPI(title="Study Abroad Platform API")
logger = logging.getLogger("studyabroad.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

settings.MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=settings.MEDIA_ROOT), name="media")

create_db_and_tables()


def _request_log(request: Request, req_id: str, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": req_id,
            "path": request.url.path,
            "method": request.method,
            **extra,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": request.client.host if request.client else "unknown",
        },
        ensure_ascii=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_log(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _request_log(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.extra})


for module in (auth, courses, tests, appointments, payments, cms, notifications, admin):
    app.include_router(module.router)


@app.get("/health")
def health():
    return {"status": "ok", "env": settings.ENV}
