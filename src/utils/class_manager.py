"""Class management utilities.

Covers class creation, the rotating join code, visibility exceptions and
repertoire teacher assignment. Roster seats live in ``roster_manager``.
"""

import logging
import re
import secrets
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH
from core.exceptions import (
    ConflictError,
    InvalidClassroomReference,
    NotFoundError,
    ValidationError,
)
from models.class_model import ClassModel, VisibilityExceptionModel
from models.enrollment import EnrollmentModel
from models.repertoire import RepertoireModel, RepertoireTeacherModel
from models.user import UserModel
from utils.clock import minutes_from_now, utcnow
from utils.normalization import to_slug

logger = logging.getLogger(__name__)

CLASS_ID_RE = re.compile(r"^[0-9a-f]{24}$")

# Same answer for unknown, expired and inactive codes
INVALID_CODE_MESSAGE = "Code invalide ou expiré"


def check_class_id(class_id: str) -> str:
    value = (class_id or "").strip().lower()
    if not CLASS_ID_RE.match(value):
        raise InvalidClassroomReference(class_id)
    return value


def generate_join_code(length: int = JOIN_CODE_LENGTH) -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


def code_candidates(code: str) -> List[str]:
    """Exact, upper and lower variants; older codes were stored in either case."""
    code = (code or "").strip()
    candidates: List[str] = []
    for variant in (code, code.upper(), code.lower()):
        if variant and variant not in candidates:
            candidates.append(variant)
    return candidates


class ClassManager:
    """Manages class, join code, visibility and repertoire operations."""

    def __init__(self, db: Session):
        self.db = db

    def create_class(self, directoryname: str, publicname: str) -> ClassModel:
        """Create a new, active class without any join code."""
        class_model = ClassModel(
            class_id=secrets.token_hex(12),
            directoryname=directoryname.strip().lower(),
            publicname=publicname.strip(),
            created_at=utcnow(),
            code="",
            code_expires=None,
            active=True,
        )
        self.db.add(class_model)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"Le répertoire '{directoryname}' existe déjà"
            ) from e
        self.db.refresh(class_model)
        logger.info("Created class %s (%s)", class_model.class_id, class_model.directoryname)
        return class_model

    def get_class(self, class_id: str) -> ClassModel:
        class_id = check_class_id(class_id)
        model = (
            self.db.query(ClassModel)
            .filter(ClassModel.class_id == class_id)
            .first()
        )
        if not model:
            raise NotFoundError("Classe introuvable")
        return model

    def get_active_class(self, class_id: str) -> ClassModel:
        model = self.get_class(class_id)
        if not model.active:
            raise NotFoundError("Classe introuvable")
        return model

    def set_active(self, class_id: str, active: bool) -> ClassModel:
        model = self.get_class(class_id)
        model.active = active
        self.db.commit()
        self.db.refresh(model)
        logger.info("Class %s active=%s", class_id, active)
        return model

    # --- Join code ---

    def resolve_join_code(self, code: str) -> ClassModel:
        """Find the active class whose unexpired join code matches.

        Args:
            code: Code typed by the student, any case.

        Returns:
            The matching ClassModel (seats available through ``.seats``).

        Raises:
            ValidationError: For unknown, expired and inactive alike.
        """
        candidates = code_candidates(code)
        if not candidates:
            raise ValidationError(INVALID_CODE_MESSAGE)
        model = (
            self.db.query(ClassModel)
            .filter(
                ClassModel.code.in_(candidates),
                ClassModel.code != "",
                ClassModel.code_expires.isnot(None),
                ClassModel.code_expires > utcnow(),
                ClassModel.active.is_(True),
            )
            .first()
        )
        if not model:
            raise ValidationError(INVALID_CODE_MESSAGE)
        return model

    def rotate_join_code(self, class_id: str, expires_in_minutes: int) -> ClassModel:
        """Replace the class join code; the previous code stops working."""
        model = self.get_class(class_id)
        model.code = generate_join_code()
        model.code_expires = minutes_from_now(expires_in_minutes)
        self.db.commit()
        self.db.refresh(model)
        logger.info(
            "Rotated join code for class %s, expires at %s", class_id, model.code_expires
        )
        return model

    def clear_join_code(self, class_id: str) -> None:
        model = self.get_class(class_id)
        model.code = ""
        model.code_expires = None
        self.db.commit()
        logger.info("Cleared join code for class %s", class_id)

    # --- Visibility exceptions ---

    def list_visibility_exceptions(self, class_id: str) -> List[str]:
        class_id = check_class_id(class_id)
        rows = (
            self.db.query(VisibilityExceptionModel.user_id)
            .filter(VisibilityExceptionModel.class_id == class_id)
            .all()
        )
        return [row.user_id for row in rows]

    def add_visibility_exception(self, class_id: str, user_id: str) -> None:
        model = self.get_class(class_id)
        self._require_user(user_id)
        if self.db.get(VisibilityExceptionModel, (model.class_id, user_id)) is not None:
            return
        self.db.add(VisibilityExceptionModel(class_id=model.class_id, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            # already granted
            self.db.rollback()

    def remove_visibility_exception(self, class_id: str, user_id: str) -> bool:
        class_id = check_class_id(class_id)
        deleted = (
            self.db.query(VisibilityExceptionModel)
            .filter(
                VisibilityExceptionModel.class_id == class_id,
                VisibilityExceptionModel.user_id == user_id,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return bool(deleted)

    # --- Repertoires ---

    def list_repertoires(self, class_id: str) -> List[RepertoireModel]:
        return list(self.get_class(class_id).repertoires)

    def add_repertoire(self, class_id: str, name: str) -> RepertoireModel:
        model = self.get_class(class_id)
        slug = to_slug(name)
        if not slug:
            raise ValidationError("Nom de répertoire invalide")
        repertoire = RepertoireModel(class_id=model.class_id, name=name.strip(), slug=slug)
        self.db.add(repertoire)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Ce répertoire existe déjà") from e
        self.db.refresh(repertoire)
        return repertoire

    def get_repertoire(self, class_id: str, name: str) -> RepertoireModel:
        class_id = check_class_id(class_id)
        repertoire = (
            self.db.query(RepertoireModel)
            .filter(RepertoireModel.class_id == class_id, RepertoireModel.slug == to_slug(name))
            .first()
        )
        if not repertoire:
            raise NotFoundError("Répertoire introuvable")
        return repertoire

    def assign_repertoire_teacher(self, class_id: str, name: str, user_id: str) -> None:
        repertoire = self.get_repertoire(class_id, name)
        self._require_user(user_id)
        if self.db.get(RepertoireTeacherModel, (repertoire.id, user_id)) is not None:
            return
        self.db.add(RepertoireTeacherModel(repertoire_id=repertoire.id, user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()

    def unassign_repertoire_teacher(self, class_id: str, name: str, user_id: str) -> bool:
        repertoire = self.get_repertoire(class_id, name)
        deleted = (
            self.db.query(RepertoireTeacherModel)
            .filter(
                RepertoireTeacherModel.repertoire_id == repertoire.id,
                RepertoireTeacherModel.user_id == user_id,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return bool(deleted)

    def is_repertoire_teacher(self, class_id: str, name: str, user_id: str) -> bool:
        class_id = check_class_id(class_id)
        return (
            self.db.query(RepertoireTeacherModel.user_id)
            .join(RepertoireModel, RepertoireModel.id == RepertoireTeacherModel.repertoire_id)
            .filter(
                RepertoireModel.class_id == class_id,
                RepertoireModel.slug == to_slug(name),
                RepertoireTeacherModel.user_id == user_id,
            )
            .first()
            is not None
        )

    def admin_repertoire_slugs(self, user_id: str, class_id: Optional[str] = None) -> List[str]:
        """Slugs of the repertoires the user is assigned to teach."""
        query = (
            self.db.query(RepertoireModel.slug)
            .join(RepertoireTeacherModel, RepertoireTeacherModel.repertoire_id == RepertoireModel.id)
            .filter(RepertoireTeacherModel.user_id == user_id)
        )
        if class_id:
            query = query.filter(RepertoireModel.class_id == class_id)
        rows = query.all()
        return sorted({row.slug for row in rows})

    # --- Members ---

    def list_members(self, class_id: str) -> List[dict]:
        class_id = check_class_id(class_id)
        query = (
            self.db.query(EnrollmentModel, UserModel)
            .join(UserModel, UserModel.user_id == EnrollmentModel.user_id)
            .filter(EnrollmentModel.class_id == class_id)
            .order_by(EnrollmentModel.id)
        )
        results = []
        for enrollment, user in query.all():
            results.append(
                {
                    "user_id": user.user_id,
                    "nom": user.nom,
                    "prenom": user.prenom,
                    "email": user.email,
                    "role_in_class": enrollment.role,
                    "joined_at": enrollment.joined_at,
                }
            )
        return results

    def _require_user(self, user_id: str) -> UserModel:
        user = self.db.query(UserModel).filter(UserModel.user_id == user_id).first()
        if not user:
            raise NotFoundError("Utilisateur introuvable")
        return user
