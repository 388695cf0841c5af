from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import PropertyAccessError
from app.core.rate_limit import limiter
from app.features.actors.routes import router as actor_router
from app.features.assignments.routes import router as assignment_router
from app.features.audit.models import ImmutableAuditEntry
from app.features.audit.routes import router as audit_router
from app.features.authorization.capabilities import CAPABILITY_TABLE_VERSION
from app.features.authorization.routes import router as authorization_router
from app.features.properties.routes import router as property_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Property Access Core",
    description="Role, assignment and audit core for the property management platform",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1] if error["loc"] else "root"
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(PropertyAccessError)
async def property_access_error_handler(request: Request, exc: PropertyAccessError):
    log.info(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "retryable": exc.retryable},
    )


@app.exception_handler(ImmutableAuditEntry)
async def immutable_audit_entry_handler(request: Request, exc: ImmutableAuditEntry):
    log.error(f"{request.method} {request.url.path} attempted to modify the audit trail: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Audit entries cannot be modified", "retryable": False},
    )


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Property Access Core API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "capability_table_version": CAPABILITY_TABLE_VERSION,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "public_endpoints": ["/", "/health", "/actors", "/authorization/capabilities"]
        },
        "features": {
            "actors": "Actor registration, suspension and permission overrides",
            "properties": "Property records and owner lookups",
            "assignments": "Manager subscriptions and vendor grants on properties",
            "authorization": "Decision evaluation and enforcement",
            "audit": "Append-only audit trail with filters and aggregates"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(actor_router, prefix="/actors", tags=["actors"])
app.include_router(property_router, prefix="/properties", tags=["properties"])
app.include_router(assignment_router, prefix="/assignments", tags=["assignments"])
app.include_router(authorization_router, prefix="/authorization", tags=["authorization"])
app.include_router(audit_router, prefix="/audit", tags=["audit"])
