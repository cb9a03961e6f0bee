from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .constants import CORS_ALLOW_ORIGIN_REGEX, CORS_ALLOW_ORIGINS
from .db import _get_connection
from .errors import CUSTOM_ERRORS, FormatError
from .logger import logger
from .schedule_routes import router as schedule_router

app = FastAPI(title="Schedule Planner API", version="0.1.0")

_allowed_origins = [origin.strip() for origin in CORS_ALLOW_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_origin_regex=None if _allowed_origins else CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(request: Request, exc: Exception) -> JSONResponse:
    status_code = CUSTOM_ERRORS.get(type(exc), 500)
    content = {"detail": str(exc)}
    if isinstance(exc, FormatError):
        content.update(
            {"message": exc.message, "lineNumber": exc.line_number, "line": exc.line}
        )
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content=content)


for _error_type in CUSTOM_ERRORS:
    app.add_exception_handler(_error_type, _error_response)


@app.on_event("startup")
def _startup() -> None:
    conn = _get_connection()
    conn.close()


app.include_router(schedule_router)
