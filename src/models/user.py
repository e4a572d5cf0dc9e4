"""User database model.

This module defines the User database model using SQLAlchemy.
"""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from .base import Base


class UserModel(Base):
    """User database model."""

    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    nom = Column(String, nullable=False)  # UPPER, no accents
    prenom = Column(String, nullable=False)  # lower, no accents
    # match_key(nom) + "|" + match_key(prenom); rejects duplicate humans
    identity_key = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    status = Column(String, nullable=False, default="eleve")  # 'eleve' or 'prof'
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)

    is_verified = Column(Boolean, nullable=False, default=False)
    confirm = Column(String, nullable=False, default="")  # bcrypt hash of the emailed code
    confirm_expires = Column(DateTime, nullable=True)
    # Set only while a signup is pending; NULL is never purged
    signup_expires_at = Column(DateTime, nullable=True, index=True)

    enrollments = relationship(
        "EnrollmentModel",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="EnrollmentModel.id",
    )
