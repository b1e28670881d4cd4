from __future__ import annotations

import re
import time
from typing import Any, Dict, Iterable, Mapping

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tariffgate.api.routes_admin import router as admin_router
from tariffgate.api.routes_classification import router as classification_router
from tariffgate.api.routes_compliance import router as compliance_router
from tariffgate.api.routes_confidence import router as confidence_router
from tariffgate.api.security import redact_key
from tariffgate.api.services import get_compliance_checker, get_rule_engine, get_threshold_router
from tariffgate.errors import InvalidPatternError, PipelineStageError
from tariffgate.observability import log_event, run_scope
from tariffgate.version import __version__

app = FastAPI(title="tariffgate API", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(classification_router)
app.include_router(compliance_router)
app.include_router(confidence_router)
app.include_router(admin_router)


RUN_ID_HEADER = "X-Run-ID"
# Client-supplied run ids are honoured only when they look like an identifier.
_CLIENT_RUN_ID = re.compile(r"^[A-Za-z0-9_.:-]{1,64}$")


@app.middleware("http")
async def scope_request_run(request: Request, call_next):
    supplied = request.headers.get(RUN_ID_HEADER)
    started = time.perf_counter()
    with run_scope(supplied if supplied and _CLIENT_RUN_ID.match(supplied) else None) as run_id:
        response = await call_next(request)
        response.headers[RUN_ID_HEADER] = run_id
        log_event(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 1),
            api_key=redact_key(request.headers.get("X-API-Key")),
        )
    return response


def validation_payload(errors: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Flatten pydantic errors into ``{"error", "fields": [{path, message, type}]}``."""

    fields = []
    for err in errors:
        parts = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields.append(
            {
                "path": ".".join(["request", *parts]),
                "message": str(err.get("msg", "Invalid value")).removeprefix("Value error, "),
                "type": err.get("type", "value_error"),
            }
        )
    return {"error": "VALIDATION_ERROR", "fields": fields}


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError | ValidationError):
    return JSONResponse(status_code=422, content=validation_payload(exc.errors()))


@app.exception_handler(PipelineStageError)
async def handle_pipeline_stage_error(request: Request, exc: PipelineStageError):
    return JSONResponse(
        status_code=502,
        content={"error": "PIPELINE_STAGE_FAILED", "stage": exc.stage, "message": str(exc)},
    )


@app.exception_handler(InvalidPatternError)
async def handle_invalid_pattern(request: Request, exc: InvalidPatternError):
    return JSONResponse(
        status_code=422,
        content={"error": "INVALID_PATTERN", "pattern": exc.pattern, "message": str(exc)},
    )


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "version": __version__,
        "rules": len(get_rule_engine().get_rules()),
        "thresholds": len(get_threshold_router().get_thresholds()),
        "restrictions": len(get_compliance_checker().get_restrictions()),
    }
