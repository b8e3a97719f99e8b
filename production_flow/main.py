from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import logging
import os

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Import router after logging is configured
from .api_router import api_router
from . import database
from .exceptions import FlowEngineError
from .services.workflow_catalog import catalog

app = FastAPI(
    title="Production Flow Engine",
    description="Stage workflow, lot material ledger and progress tracking for textile production",
)

# Engine errors carry their own HTTP status
@app.exception_handler(FlowEngineError)
async def flow_engine_exception_handler(request: Request, exc: FlowEngineError):
    logger.warning(f"{exc.code} on {request.method} {request.url}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )

# Global exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"VALIDATION ERROR on {request.method} {request.url}: {exc}")
    return JSONResponse(
        status_code=422,
        content={"detail": f"Validation error: {exc.errors()}", "error_code": "VALIDATION_ERROR"}
    )

# Set up CORS for the ERP frontend
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# Add additional origins from environment variable
env_origins = os.getenv("CORS_ORIGINS", "")
if env_origins:
    cors_origins.extend([origin.strip() for origin in env_origins.split(",") if origin.strip()])

logger.info(f"CORS origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)

@app.on_event("startup")
async def startup_event():
    """
    Initialize the database on startup.
    """
    logger.info(f"Workflow catalog loaded for {len(catalog.process_types())} process types")
    logger.info("Initializing database...")
    try:
        # Create tables if they don't exist
        if database.engine is not None:
            from . import models
            models.Base.metadata.create_all(bind=database.engine)
            logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")

@app.get("/")
async def root():
    return {"message": "Production Flow Engine API is Live"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
