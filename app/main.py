from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.features.policies.exceptions import PolicyNotFoundError, PolicyValidationError, SystemPolicyError
from app.features.policies.routes import router as policy_router, catalog_router as policy_catalog_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Permission Policy Service",
    description="Profile-scoped permission policies with deny-overrides-allow authorization",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if not config.ENFORCE_POLICY_ACCESS:
    log.warning("Policy access enforcement disabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
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
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(PolicyValidationError)
async def policy_validation_exception_handler(_request: Request, exc: PolicyValidationError) -> Response:
    log.info("Policy validation error: %s", exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PolicyNotFoundError)
async def policy_not_found_exception_handler(_request: Request, exc: PolicyNotFoundError) -> Response:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(SystemPolicyError)
async def system_policy_exception_handler(_request: Request, exc: SystemPolicyError) -> Response:
    log.warning("Rejected change to system policy %s", exc.policy_id)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


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
        "message": "Permission Policy Service",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "identity": {
            "info": "Callers are identified by the X-User-Id (UUID) and X-User-Roles (comma-separated) headers",
            "access_enforced": config.ENFORCE_POLICY_ACCESS,
        },
        "features": {
            "policies": "Profile-scoped ALLOW/DENY policies for users, groups and roles",
            "authorization": "Wildcard action/resource matching with deny-overrides-allow",
            "predefined_roles": "SECURITY_ADMIN, SERVICE_ADMIN, READER, CREATOR, APPROVER",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Permission policy routes
app.include_router(policy_router, prefix="/profiles", tags=["policies"])

# Predefined roles and known actions
app.include_router(policy_catalog_router, prefix="/policy-catalog", tags=["policies"])
