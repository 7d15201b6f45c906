import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from lms_backend.config import settings
from lms_backend.database import engine, Base
from lms_backend.errors import LMSError
from lms_backend.logging_config import configure_logging
from lms_backend.routes import tests, admin_tests
# Import all models so their tables are registered on Base
from lms_backend import models  # noqa: F401

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG
)

# CORS configuration - allow frontend URL from environment or default to all origins
frontend_url = settings.FRONTEND_URL
allowed_origins = [frontend_url] if frontend_url != "*" else ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LMSError)
async def lms_error_handler(request: Request, exc: LMSError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": "storage_error"},
    )


@app.on_event("startup")
async def startup_event():
    if settings.AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified")


app.include_router(tests.router)
app.include_router(admin_tests.router)


@app.get("/")
async def root():
    return {
        "message": "LMS Test Engine API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": settings.APP_NAME
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lms_backend.main:app",
        host="127.0.0.1",
        port=8001,
        reload=False
    )
