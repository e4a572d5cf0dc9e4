from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class EnrollmentModel(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "class_id", name="uq_enrollments_user_class"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        String, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False
    )
    class_id = Column(
        String, ForeignKey("classes.class_id", ondelete="CASCADE"), index=True, nullable=False
    )
    role = Column(String, nullable=False, default=ROLE_USER)  # 'user' or 'admin'
    joined_at = Column(DateTime, nullable=False)

    user = relationship("UserModel", back_populates="enrollments")
    class_ = relationship("ClassModel", back_populates="enrollments")
