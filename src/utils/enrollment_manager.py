"""Enrollment record maintenance.

Joining binds a seat and adds a membership row in the same transaction.
Leaving is the exact mirror: every seat the user holds in the class is
released, the membership row is removed, and the user is dropped from the
class's visibility exceptions and repertoire teacher sets.
"""

import logging
from typing import Dict, List

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, ForbiddenError, ValidationError
from models.class_model import VisibilityExceptionModel
from models.enrollment import ROLE_ADMIN, ROLE_USER, EnrollmentModel
from models.repertoire import RepertoireModel, RepertoireTeacherModel
from models.seat import SeatModel
from schemas.user import Enrollment
from utils.class_manager import check_class_id
from utils.clock import utcnow
from utils.converters import merge_enrollments
from utils.roster_manager import ClaimResult, RosterManager, SeatRef

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class EnrollmentManager:
    """Manages class memberships and the seat side effects that go with them."""

    def __init__(self, db: Session, roster: RosterManager = None):
        self.db = db
        self.roster = roster or RosterManager(db)

    def list_enrollments(self, user_id: str) -> List[Enrollment]:
        rows = (
            self.db.query(EnrollmentModel)
            .filter(EnrollmentModel.user_id == user_id)
            .order_by(EnrollmentModel.id)
            .all()
        )
        return merge_enrollments(Enrollment(class_id=r.class_id, role=r.role) for r in rows)

    def role_in(self, user_id: str, class_id: str):
        row = (
            self.db.query(EnrollmentModel.role)
            .filter(EnrollmentModel.user_id == user_id, EnrollmentModel.class_id == class_id)
            .first()
        )
        return row.role if row else None

    def enroll(self, user_id: str, class_id: str, commit: bool = True) -> None:
        """Add a standard membership unless one (of any role) already exists."""
        class_id = check_class_id(class_id)
        values = {
            "user_id": user_id,
            "class_id": class_id,
            "role": ROLE_USER,
            "joined_at": utcnow(),
        }
        dialect = self.db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is not None:
            stmt = insert_fn(EnrollmentModel).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "class_id"]
            )
            self.db.execute(stmt)
        elif self.role_in(user_id, class_id) is None:
            self.db.add(EnrollmentModel(**values))
        if commit:
            self.db.commit()

    def grant_admin(self, user_id: str, class_id: str) -> None:
        """Make the user an admin of the class, replacing a standard row.

        An admin does not occupy a student seat in the same class, so any
        seat the user held there is released.
        """
        class_id = check_class_id(class_id)
        released = self.roster.release_user_seats(class_id, user_id)
        row = (
            self.db.query(EnrollmentModel)
            .filter(EnrollmentModel.user_id == user_id, EnrollmentModel.class_id == class_id)
            .first()
        )
        if row:
            row.role = ROLE_ADMIN
        else:
            self.db.add(
                EnrollmentModel(
                    user_id=user_id, class_id=class_id, role=ROLE_ADMIN, joined_at=utcnow()
                )
            )
        self.db.commit()
        logger.info(
            "Granted admin on class %s to user %s (%d seat(s) released)",
            class_id, user_id, released,
        )

    def claim_and_enroll(
        self, class_id: str, nom: str, prenom: str, user_id: str, commit: bool = True
    ) -> ClaimResult:
        """Claim the matching seat and record the membership atomically.

        Raises:
            ConflictError: If the user administers this class.
            Anything ``RosterManager.claim_seat`` raises.
        """
        class_id = check_class_id(class_id)
        try:
            if self.role_in(user_id, class_id) == ROLE_ADMIN:
                raise ConflictError(
                    "Un administrateur de la classe ne peut pas occuper une place élève"
                )
            claim = self.roster.claim_seat(class_id, nom, prenom, user_id, commit=False)
            self.enroll(user_id, class_id, commit=False)
            if commit:
                self.db.commit()
        except Exception:
            if commit:
                self.db.rollback()
            raise
        return claim

    def unenroll(self, user_id: str, class_id: str, commit: bool = True) -> Dict[str, int]:
        """Remove every trace of the user from the class.

        Returns:
            Counts of released seats, removed memberships, visibility
            exceptions and repertoire assignments.
        """
        class_id = check_class_id(class_id)
        seats = self.roster.release_user_seats(class_id, user_id)
        memberships = self.db.execute(
            delete(EnrollmentModel)
            .where(EnrollmentModel.user_id == user_id, EnrollmentModel.class_id == class_id)
            .execution_options(synchronize_session=False)
        ).rowcount or 0
        visibility = self.db.execute(
            delete(VisibilityExceptionModel)
            .where(
                VisibilityExceptionModel.user_id == user_id,
                VisibilityExceptionModel.class_id == class_id,
            )
            .execution_options(synchronize_session=False)
        ).rowcount or 0
        class_repertoires = select(RepertoireModel.id).where(RepertoireModel.class_id == class_id)
        repertoires = self.db.execute(
            delete(RepertoireTeacherModel)
            .where(
                RepertoireTeacherModel.user_id == user_id,
                RepertoireTeacherModel.repertoire_id.in_(class_repertoires),
            )
            .execution_options(synchronize_session=False)
        ).rowcount or 0
        if commit:
            self.db.commit()
        self.db.expire_all()
        counts = {
            "seats": seats,
            "memberships": memberships,
            "visibility": visibility,
            "repertoires": repertoires,
        }
        logger.info("Unenrolled user %s from class %s: %s", user_id, class_id, counts)
        return counts

    def unenroll_everywhere(self, user_id: str, commit: bool = True) -> None:
        """Unenroll from every class the user is linked to in any way."""
        class_ids = set()
        for model, column in (
            (EnrollmentModel, EnrollmentModel.class_id),
            (SeatModel, SeatModel.class_id),
            (VisibilityExceptionModel, VisibilityExceptionModel.class_id),
        ):
            rows = self.db.query(column).filter(model.user_id == user_id).all()
            class_ids.update(row[0] for row in rows)
        rows = (
            self.db.query(RepertoireModel.class_id)
            .join(RepertoireTeacherModel, RepertoireTeacherModel.repertoire_id == RepertoireModel.id)
            .filter(RepertoireTeacherModel.user_id == user_id)
            .all()
        )
        class_ids.update(row.class_id for row in rows)
        for class_id in sorted(class_ids):
            self.unenroll(user_id, class_id, commit=False)
        if commit:
            self.db.commit()

    def leave_class(self, user_id: str, class_id: str) -> None:
        """Self-service leave. Admins cannot leave the class they manage."""
        class_id = check_class_id(class_id)
        role = self.role_in(user_id, class_id)
        if role == ROLE_ADMIN:
            raise ForbiddenError("Un administrateur ne peut pas quitter sa classe")
        if role is None:
            raise ValidationError("Impossible de se désinscrire de cette classe")
        self.unenroll(user_id, class_id)

    def release_seat(self, class_id: str, ref: SeatRef) -> str:
        """Admin removal of a student from a seat; the seat stays on the roster.

        Returns:
            The user id that was released.
        """
        seat = self.roster.resolve_seat_ref(class_id, ref)
        owner = seat.user_id
        if owner is None:
            raise ValidationError("Cette place est déjà libre")
        self.unenroll(owner, seat.class_id)
        return owner

    def remove_seat(self, class_id: str, ref: SeatRef) -> None:
        """Delete a seat; its claimant, if any, is unenrolled first."""
        seat = self.roster.resolve_seat_ref(class_id, ref)
        owner = seat.user_id
        try:
            if owner is not None:
                self.unenroll(owner, seat.class_id, commit=False)
            self.roster.delete_seat_row(seat)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Removed seat %s/%s from class %s", ref.seat_key, ref.position, class_id)

    def require_admin(self, user_id: str, class_id: str) -> None:
        if self.role_in(user_id, check_class_id(class_id)) != ROLE_ADMIN:
            raise ForbiddenError("Accès réservé aux administrateurs")
