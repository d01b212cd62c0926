"""FastAPI account and session service main application"""
import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import engine, Base
from .errors import AuthServiceError
from .logging import get_logger
from .routers import auth, user

logger = get_logger(__name__)

#Create database tables
Base.metadata.create_all(bind=engine)

#Initialize FastAPI app
app = FastAPI(
    title="Session Auth Service",
    description="Password authentication with database-backed, Redis-accelerated sessions",
    version="1.0.0"
)

#CORS configuration
ALLOWED_ORIGIN = os.getenv("ALLOWED_ORIGIN", "http://localhost:3000")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[ALLOWED_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(AuthServiceError)
async def auth_service_error_handler(request: Request, exc: AuthServiceError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=type(exc).__name__)
    content = {"detail": exc.message}
    content.update(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


#Include routers
app.include_router(auth.router)
app.include_router(user.router)


#Health check endpoints
@app.get("/")
async def root():
    return {
        "service": "Session Auth Service",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
