"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.v1.routes import api_router
from app.core.config import get_settings
from app.domain.errors import CampaignError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates n8n / database configuration
    - Initializes the database (creates missing tables)
    """
    # ========================
    # STARTUP
    # ========================
    logger.info("Starting Campaign Execution Controller...")

    settings = get_settings()
    strict_validation = settings.environment == "production"

    try:
        from app.core.validation import validate_settings_on_startup
        validate_settings_on_startup(settings, strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        else:
            logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    try:
        from app.infrastructure.storage.database import get_session_factory
        get_session_factory()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Campaign Execution Controller started successfully")

    yield  # Application is running

    # ========================
    # SHUTDOWN
    # ========================
    logger.info("Campaign Execution Controller shutdown complete")


app = FastAPI(
    title="Campaign Execution Controller",
    description="Campaign lifecycle, n8n workflow deployment and execution tracking",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CampaignError)
async def campaign_error_handler(request: Request, exc: CampaignError):
    """Render domain errors as {"message", "error"} with their HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=422,
        content={"message": message, "error": "validation_error", "detail": jsonable_errors(errors)},
    )


def jsonable_errors(errors) -> list:
    """Pydantic error dicts may carry exception objects in ctx"""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in errors
    ]


# Include API routes
app.include_router(api_router, prefix=get_settings().api_prefix)


@app.get("/")
async def root():
    return {"message": "Campaign Execution Controller API", "status": "running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
