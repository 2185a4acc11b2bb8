# app/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException

from app.core.errors import ServiceError
from app.core.settings import (
    ALLOWED_ORIGINS,
    ALLOWED_ORIGIN_REGEX,
    CORS_ALLOW_METHODS,
    LOG_LEVEL,
)

from app.routes.health import router as health_router
from app.routes.speaking import router as speaking_router
from app.routes.usage import router as usage_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="JE Speaking API")

raw = (ALLOWED_ORIGINS or "*").strip()

cors_kwargs = dict(
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=["*"],
)

origins = [o.strip() for o in raw.split(",") if o.strip()]
if not origins or any(o == "*" for o in origins):
    cors_kwargs.update(
        allow_origins=["*"],
        allow_credentials=False,
    )
else:
    cors_kwargs.update(
        allow_origins=origins,
        allow_credentials=False,
    )
    if ALLOWED_ORIGIN_REGEX:
        cors_kwargs["allow_origin_regex"] = ALLOWED_ORIGIN_REGEX

app.add_middleware(CORSMiddleware, **cors_kwargs)


# Every failure the caller sees is {"error": "..."}; internals stay in the logs
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return JSONResponse({"error": detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request."}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error."}, status_code=500)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "JE Speaking Backend is running."


app.include_router(health_router, prefix="/api")
app.include_router(usage_router, prefix="/api")
app.include_router(speaking_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    from app.core.settings import PORT

    uvicorn.run("app.main:app", host="0.0.0.0", port=PORT)
