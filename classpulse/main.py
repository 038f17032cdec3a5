"""
Main FastAPI application for ClassPulse live classroom feedback
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import classpulse.config
from classpulse.errors import TransientIOError
from classpulse.log import configure_logging
from classpulse.routes import stream, student, teacher

configure_logging(classpulse.config.settings.log_level, classpulse.config.settings.environment)

app = FastAPI(
    title="ClassPulse",
    description="Live classroom understanding feedback",
    version="0.1.0",
)

# Include routers
app.include_router(teacher.router, tags=["teacher"])
app.include_router(student.router, tags=["student"])
app.include_router(stream.router, tags=["stream"])


@app.exception_handler(TransientIOError)
async def transient_io_handler(request: Request, exc: TransientIOError) -> JSONResponse:
    """Store failures degrade to a retryable error, never a crash"""
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable. Please try again."},
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Health check endpoint"""
    return {"status": "ok", "message": "ClassPulse API"}


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint for monitoring"""
    return {"status": "healthy"}
