"""User management utilities.

This module provides password hashing, account lookups, login checks,
password changes and account deletion.
"""

import logging
import uuid
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import BCRYPT_ROUNDS
from core.exceptions import AuthError, ForbiddenError, NotFoundError
from models.enrollment import ROLE_ADMIN
from models.user import UserModel
from schemas.user import User
from utils.clock import utcnow
from utils.converters import model_to_user
from utils.enrollment_manager import EnrollmentManager
from utils.normalization import identity_key, normalize_email, normalize_nom, normalize_prenom

logger = logging.getLogger(__name__)

LOGIN_FAILED_MESSAGE = "Compte inexistant ou non vérifié"


def hash_secret(secret: str) -> str:
    """Hash a password or verification code using bcrypt.

    Args:
        secret: Plain text value.

    Returns:
        Hashed value (bcrypt hash string).
    """
    secret_bytes = secret.encode("utf-8")
    # bcrypt only looks at the first 72 bytes
    if len(secret_bytes) > 72:
        secret_bytes = secret_bytes[:72]
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(secret_bytes, salt).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    """Verify a value against a bcrypt hash; empty or malformed hashes never match."""
    if not plain or not hashed:
        return False
    plain_bytes = plain.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(plain_bytes, hashed.encode("utf-8"))
    except ValueError as e:
        logger.error("Stored hash could not be checked: %s", e)
        return False


class UserManager:
    """Manages user accounts using SQLAlchemy."""

    def __init__(self, db: Session):
        """Initialize UserManager.

        Args:
            db: SQLAlchemy Session.
        """
        self.db = db

    def get_model_by_email(self, email: str) -> Optional[UserModel]:
        return (
            self.db.query(UserModel)
            .filter(UserModel.email == normalize_email(email))
            .first()
        )

    def get_model_by_id(self, user_id: str) -> Optional[UserModel]:
        return self.db.query(UserModel).filter(UserModel.user_id == user_id).first()

    def get_user_by_id(self, user_id: str) -> User:
        """Get a user by user ID.

        Raises:
            NotFoundError: If no such user exists.
        """
        model = self.get_model_by_id(user_id)
        if not model:
            raise NotFoundError("Utilisateur introuvable")
        return model_to_user(model)

    def authenticate(self, email: str, password: str) -> UserModel:
        """Check credentials of an active, verified account.

        Raises:
            AuthError: Same message for unknown email, wrong password and
                unverified or inactive accounts.
        """
        model = self.get_model_by_email(email)
        if (
            model is None
            or not verify_secret(password, model.password_hash)
            or not model.is_verified
            or not model.active
        ):
            raise AuthError(LOGIN_FAILED_MESSAGE)
        return model

    def change_password(self, user_id: str, new_password: str) -> None:
        model = self.get_model_by_id(user_id)
        if not model:
            raise NotFoundError("Utilisateur introuvable.")
        model.password_hash = hash_secret(new_password)
        self.db.commit()
        logger.info("Password changed for user %s", user_id)

    def set_status(self, user_id: str, status: str) -> None:
        model = self.get_model_by_id(user_id)
        if not model:
            raise NotFoundError("Utilisateur introuvable.")
        model.status = status
        self.db.commit()

    def import_legacy_user(self, doc: dict) -> Optional[UserModel]:
        """Insert a user exported from the previous document store.

        The password is expected to be a bcrypt hash already. Enrollments
        are restored separately by the caller.

        Returns:
            The new UserModel, or None when the email or person is already
            known.
        """
        raw_id = doc.get("_id")
        if isinstance(raw_id, dict):
            raw_id = raw_id.get("$oid")
        email = normalize_email(doc.get("email"))
        nom, prenom = doc.get("nom", ""), doc.get("prenom", "")
        if not email or not nom or not prenom:
            logger.warning("Skipping legacy user without email or names: %r", raw_id)
            return None

        model = UserModel(
            user_id=str(raw_id) if raw_id else str(uuid.uuid4()),
            nom=normalize_nom(nom),
            prenom=normalize_prenom(prenom),
            identity_key=identity_key(nom, prenom),
            email=email,
            password_hash=doc.get("password") or "",
            status=doc.get("status") or "eleve",
            active=doc.get("active", True) is not False,
            created_at=utcnow(),
            is_verified=bool(doc.get("isVerified")),
            confirm="",
            confirm_expires=None,
            signup_expires_at=None,
        )
        self.db.add(model)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("Legacy user %s already present, skipped", email)
            return None
        return model

    def delete_account(self, user_id: str) -> None:
        """Delete an account after unenrolling it everywhere.

        Raises:
            NotFoundError: If the user does not exist.
            ForbiddenError: If the user administers any class.
        """
        model = self.get_model_by_id(user_id)
        if not model:
            raise NotFoundError("Utilisateur introuvable.")
        if any(e.role == ROLE_ADMIN for e in model.enrollments):
            raise ForbiddenError("Impossible pour un professeur de se désinscrire")

        enrollments = EnrollmentManager(self.db)
        try:
            enrollments.unenroll_everywhere(user_id, commit=False)
            self.db.query(UserModel).filter(UserModel.user_id == user_id).delete(
                synchronize_session=False
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Deleted account %s", user_id)
