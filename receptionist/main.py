import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .database import Base, SessionLocal, engine
from .domain.context.resolver import agent_auth_middleware, tenant_context_middleware
from .domain.context.router import router as context_router
from .domain.oauth.router import router as oauth_router
from .domain.tenants.router import agents_router
from .domain.tenants.router import router as auth_router
from .domain.vault import CredentialVault, EnvKeyProvider
from .errors import AppError, ConfigurationError, RateLimitError
from .logging_config import configure_logging
from .models import seed_subscription_plans
from .security_headers import SecurityHeadersMiddleware

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")

    missing = config.validate_config()
    if missing:
        if config.IS_PRODUCTION:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        logger.warning(f"⚠️ Missing configuration (development mode): {', '.join(missing)}")

    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    db = SessionLocal()
    try:
        added = seed_subscription_plans(db)
        if added:
            logger.info(f"Seeded {added} subscription plans")
    finally:
        db.close()

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Receptionist API", version="1.0.0", lifespan=lifespan)
app.state.vault = CredentialVault(EnvKeyProvider())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.status_code} {exc.code}")
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Field locations and messages only; submitted values may include passwords
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    ]
    logger.warning(f"Validation error for {request.url.path}: {problems}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "validation_error", "message": "; ".join(problems)},
    )


# Starlette runs the most recently added middleware first, so agent
# authentication is registered after the resolver that consumes its result.
app.middleware("http")(tenant_context_middleware)
app.middleware("http")(agent_auth_middleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])

logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,  # Refresh token cookie
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(auth_router)
app.include_router(agents_router)
app.include_router(oauth_router)
app.include_router(context_router)


@app.get("/")
def root():
    return {"message": "Receptionist API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
