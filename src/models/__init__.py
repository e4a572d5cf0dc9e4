"""ORM models; importing this package registers every table on Base.metadata."""

from .base import Base
from .user import UserModel
from .class_model import ClassModel, VisibilityExceptionModel
from .seat import SeatModel
from .enrollment import EnrollmentModel
from .repertoire import RepertoireModel, RepertoireTeacherModel

__all__ = [
    "Base",
    "UserModel",
    "ClassModel",
    "VisibilityExceptionModel",
    "SeatModel",
    "EnrollmentModel",
    "RepertoireModel",
    "RepertoireTeacherModel",
]
