"""Dependency injection module for FastAPI.

Managers are built per request around the request-scoped DB session. The
email sender is created once in ``create_app`` and read from app state.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.database import get_db
from utils import class_manager
from utils import enrollment_manager
from utils import roster_manager
from utils import signup_manager
from utils import user_manager
from utils.email_sender import EmailSender


def get_email_sender(request: Request) -> EmailSender:
    """Get the application-wide EmailSender."""
    return request.app.state.email_sender


def get_user_manager(db: Session = Depends(get_db)) -> user_manager.UserManager:
    """Get UserManager instance with request-scoped DB session.

    Args:
        db: Database session.

    Returns:
        UserManager instance.
    """
    return user_manager.UserManager(db)


def get_class_manager(db: Session = Depends(get_db)) -> class_manager.ClassManager:
    """Get ClassManager instance with request-scoped DB session."""
    return class_manager.ClassManager(db)


def get_roster_manager(db: Session = Depends(get_db)) -> roster_manager.RosterManager:
    """Get RosterManager instance with request-scoped DB session."""
    return roster_manager.RosterManager(db)


def get_enrollment_manager(
    roster: roster_manager.RosterManager = Depends(get_roster_manager),
) -> enrollment_manager.EnrollmentManager:
    """Get EnrollmentManager sharing the request's RosterManager (and session)."""
    return enrollment_manager.EnrollmentManager(roster.db, roster)


def get_signup_manager(
    enrollments: enrollment_manager.EnrollmentManager = Depends(get_enrollment_manager),
    email_sender: EmailSender = Depends(get_email_sender),
) -> signup_manager.SignupManager:
    """Get SignupManager instance.

    Args:
        enrollments: Request-scoped EnrollmentManager.
        email_sender: Application EmailSender.

    Returns:
        SignupManager instance.
    """
    return signup_manager.SignupManager(enrollments.db, email_sender, enrollments)


# Type aliases for dependency injection
UserManagerDep = Annotated[
    user_manager.UserManager, Depends(get_user_manager)
]
ClassManagerDep = Annotated[
    class_manager.ClassManager, Depends(get_class_manager)
]
RosterManagerDep = Annotated[
    roster_manager.RosterManager, Depends(get_roster_manager)
]
EnrollmentManagerDep = Annotated[
    enrollment_manager.EnrollmentManager, Depends(get_enrollment_manager)
]
SignupManagerDep = Annotated[
    signup_manager.SignupManager, Depends(get_signup_manager)
]
