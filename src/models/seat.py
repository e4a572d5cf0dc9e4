"""Roster seat database model."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base


class SeatModel(Base):
    """One pre-registered student slot in a class roster.

    ``free`` may be NULL on legacy rows; NULL counts as free. A seat is
    claimed iff ``free`` is False and ``user_id`` is set.
    """

    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint("class_id", "seat_key", name="uq_seats_class_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(
        String, ForeignKey("classes.class_id", ondelete="CASCADE"), index=True, nullable=False
    )
    position = Column(Integer, nullable=False)
    # Stable sub-identifier; legacy imports may not have one
    seat_key = Column(String, nullable=True)
    nom = Column(String, nullable=False)
    prenom = Column(String, nullable=False)
    email = Column(String, nullable=False, default="")
    free = Column(Boolean, nullable=True, default=True)
    user_id = Column(
        String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True
    )

    class_ = relationship("ClassModel", back_populates="seats")
