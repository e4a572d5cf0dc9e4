"""Main FastAPI application module.

This module builds the FastAPI application, registers the route handlers
and maps domain exceptions to JSON error responses.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import auth, class_route, users
from config import API_HOST, API_PORT, CORS_ALLOWED_ORIGINS
from core.database import SessionLocal, init_db
from core.exceptions import ClassroomError
from core.logging_config import setup_logging
from utils.email_sender import EmailSender, build_email_sender
from utils.signup_manager import SignupManager

logger = logging.getLogger(__name__)

API_TITLE = "Classroom Roster API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Accounts, class rosters and seat claiming for classroom apps."

_VALUE_ERROR_PREFIX = "Value error, "


def _field_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = str(error.get("msg", ""))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        errors.append({"field": ".".join(loc), "message": message})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ClassroomError)
    def handle_classroom_error(request: Request, exc: ClassroomError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"errors": _field_errors(exc)})

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Erreur interne du serveur"})


def purge_expired_signups_once(email_sender: EmailSender) -> int:
    db = SessionLocal()
    try:
        return SignupManager(db, email_sender).purge_expired_signups()
    finally:
        db.close()


def create_app(email_sender: Optional[EmailSender] = None) -> FastAPI:
    """Build the application.

    Args:
        email_sender: Outgoing mail; defaults to SMTP from configuration.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title=API_TITLE, description=API_DESCRIPTION, version=API_VERSION)
    app.state.email_sender = email_sender or build_email_sender()

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register route handlers
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(class_route.router)

    @app.on_event("startup")
    def startup_tasks() -> None:
        """Create tables and sweep signups that expired while we were down."""
        init_db()
        purged = purge_expired_signups_once(app.state.email_sender)
        if purged:
            logger.info("Startup purge removed %d pending signup(s)", purged)

    @app.get("/", summary="API root", tags=["Info"])
    def root() -> dict:
        """Return API information and documentation links."""
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "description": API_DESCRIPTION,
            "docs": {
                "swagger": "/docs",
                "redoc": "/redoc",
            },
            "health": "/api/health",
        }

    @app.get("/api/health", summary="Health check", tags=["Health"])
    def health() -> dict:
        return {"status": "ok"}

    return app


setup_logging()

app = create_app()


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=API_HOST, port=API_PORT, reload=True)
