from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from .base import Base


class ClassModel(Base):
    __tablename__ = "classes"

    class_id = Column(String, primary_key=True, index=True)
    directoryname = Column(String, unique=True, nullable=False)
    publicname = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)
    code = Column(String, nullable=False, default="", index=True)
    code_expires = Column(DateTime, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    seats = relationship(
        "SeatModel",
        back_populates="class_",
        cascade="all, delete-orphan",
        order_by="SeatModel.position",
    )
    enrollments = relationship(
        "EnrollmentModel",
        back_populates="class_",
        cascade="all, delete-orphan",
    )
    repertoires = relationship(
        "RepertoireModel",
        back_populates="class_",
        cascade="all, delete-orphan",
        order_by="RepertoireModel.id",
    )
    visibility_exceptions = relationship(
        "VisibilityExceptionModel",
        cascade="all, delete-orphan",
    )


class VisibilityExceptionModel(Base):
    """A user allowed to see the class outside of normal enrollment rules."""

    __tablename__ = "class_visibility_exceptions"

    class_id = Column(
        String, ForeignKey("classes.class_id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(
        String, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
