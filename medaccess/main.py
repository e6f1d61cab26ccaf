from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from datetime import datetime, timezone
import os

from . import __version__
from .access.errors import AccessError, InvalidInputFormat
from .api import auth_router, clinician_router, patient_router, configure_access_api
from .audit.service import get_audit_service
from .database import async_session_factory, get_engine, reset_engine
from .identity.auth import DEV_MODE
from .services import AccessServices, init_schema


class AddTraceIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "system"
        return True


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - trace_id=%(trace_id)s - %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(AddTraceIdFilter())
logger = logging.getLogger("medaccess.core")

app = FastAPI(
    title="Medical Access Delegation Service",
    version=__version__,
    docs_url="/docs" if DEV_MODE else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(patient_router)
app.include_router(clinician_router)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
    err = InvalidInputFormat("Invalid or missing fields: " + ", ".join(f for f in fields if f))
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "version": __version__,
    }


@app.on_event("startup")
async def startup_event():
    logger.info("Medical access service starting")
    if os.getenv("DB_INIT", "false").lower() in {"1", "true", "yes"}:
        try:
            await init_schema(get_engine(), include_directory=DEV_MODE)
        except Exception as e:  # noqa: BLE001
            logger.exception("DB init failed: %s", e)
            raise
    services = AccessServices.build(
        async_session_factory, audit=await get_audit_service()
    )
    configure_access_api(services=services)
    logger.info("Medical access components ready")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Medical access service shutting down")
    configure_access_api(services=None)
    await reset_engine()
