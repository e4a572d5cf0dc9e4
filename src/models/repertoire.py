from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base


class RepertoireModel(Base):
    """Named sub-resource of a class (a course folder)."""

    __tablename__ = "repertoires"
    __table_args__ = (
        UniqueConstraint("class_id", "slug", name="uq_repertoires_class_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(
        String, ForeignKey("classes.class_id", ondelete="CASCADE"), index=True, nullable=False
    )
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)

    class_ = relationship("ClassModel", back_populates="repertoires")
    teachers = relationship(
        "RepertoireTeacherModel",
        cascade="all, delete-orphan",
    )


class RepertoireTeacherModel(Base):
    __tablename__ = "repertoire_teachers"

    repertoire_id = Column(
        Integer, ForeignKey("repertoires.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(
        String, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
