"""Signup, email verification and password reset.

An account is created unverified with a hashed, short-lived email code and
a signup deadline. Verification is one-way and, when the signup came
through a join code, happens in the same transaction as the seat claim and
the enrollment: if the claim fails the account stays unverified.

Emails are sent after the state change is committed. A failed send is
reported in the outcome and never undoes the change.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import (
    SIGNUP_TTL_MINUTES,
    VERIFICATION_CODE_ALPHABET,
    VERIFICATION_CODE_LENGTH,
    VERIFICATION_CODE_TTL_MINUTES,
)
from core.exceptions import ConflictError, ExpiredError, NotFoundError, ValidationError
from models.user import UserModel
from schemas.user import User
from utils.clock import minutes_from_now, utcnow
from utils.converters import model_to_user
from utils.email_sender import EmailDeliveryError, EmailSender, build_code_email
from utils.enrollment_manager import EnrollmentManager
from utils.normalization import identity_key, normalize_email, normalize_nom, normalize_prenom
from utils.roster_manager import ClaimResult
from utils.user_manager import hash_secret, verify_secret

logger = logging.getLogger(__name__)

EMAIL_TAKEN_MESSAGE = "Cet email est déjà utilisé"
ALREADY_VERIFIED_MESSAGE = "Ce compte est déjà vérifié."
CODE_EXPIRED_MESSAGE = "Le code a expiré. Veuillez en demander un nouveau."
WRONG_CODE_MESSAGE = "Code incorrect."
UNKNOWN_ACCOUNT_MESSAGE = "Aucun compte trouvé pour cet email."


def generate_verification_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    return "".join(secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(length))


@dataclass
class SignupOutcome:
    """Result of an operation that ends with an email."""

    user: User
    message_id: Optional[str] = None
    notification_error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.notification_error is None


@dataclass
class VerifyOutcome:
    user: User
    claim: Optional[ClaimResult] = None
    already_verified: bool = False


def _live_account_clause(now):
    """Accounts that still count: verified, or pending within their window."""
    return or_(
        UserModel.is_verified.is_(True),
        UserModel.signup_expires_at.is_(None),
        UserModel.signup_expires_at > now,
    )


class SignupManager:
    """Manages the pending-account lifecycle and one-time email codes."""

    def __init__(
        self,
        db: Session,
        email_sender: EmailSender,
        enrollments: Optional[EnrollmentManager] = None,
    ):
        """Initialize SignupManager.

        Args:
            db: SQLAlchemy Session.
            email_sender: Used for verification and reset codes.
            enrollments: Used to claim a seat on verification.
        """
        self.db = db
        self.email_sender = email_sender
        self.enrollments = enrollments or EnrollmentManager(db)

    # --- Expiry ---

    def purge_expired_signups(self) -> int:
        """Delete unverified accounts whose signup window has passed.

        Returns:
            Number of deleted accounts.
        """
        now = utcnow()
        expired_ids = [
            row.user_id
            for row in self.db.query(UserModel.user_id)
            .filter(
                UserModel.is_verified.is_(False),
                UserModel.signup_expires_at.isnot(None),
                UserModel.signup_expires_at < now,
            )
            .all()
        ]
        if not expired_ids:
            return 0
        try:
            for user_id in expired_ids:
                self.enrollments.unenroll_everywhere(user_id, commit=False)
            deleted = (
                self.db.query(UserModel)
                .filter(
                    UserModel.user_id.in_(expired_ids),
                    UserModel.is_verified.is_(False),
                )
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.expire_all()
        logger.info("Purged %d expired pending signup(s)", deleted)
        return deleted

    # --- Prechecks ---

    def email_in_use(self, email: str) -> bool:
        """Whether a live account holds the email; expired pending ones do not count."""
        return (
            self.db.query(UserModel.user_id)
            .filter(
                UserModel.email == normalize_email(email),
                _live_account_clause(utcnow()),
            )
            .first()
            is not None
        )

    def identity_in_use(self, nom: str, prenom: str) -> bool:
        return (
            self.db.query(UserModel.user_id)
            .filter(
                UserModel.identity_key == identity_key(nom, prenom),
                _live_account_clause(utcnow()),
            )
            .first()
            is not None
        )

    def check_available(self, nom: str, prenom: str, email: Optional[str] = None) -> None:
        """Raise ConflictError if the email or the person already has an account."""
        if email and self.email_in_use(email):
            raise ConflictError(EMAIL_TAKEN_MESSAGE)
        if self.identity_in_use(nom, prenom):
            raise ConflictError(
                f"L'utilisateur {normalize_nom(nom)} {normalize_prenom(prenom)} est déjà inscrit"
            )

    # --- Signup ---

    def create_pending_account(
        self, nom: str, prenom: str, email: str, password: str
    ) -> SignupOutcome:
        """Create an unverified account and email its code.

        Args:
            nom: Surname as typed.
            prenom: Given name as typed.
            email: Account email.
            password: Plain password, already validated.

        Returns:
            SignupOutcome with the delivery result.

        Raises:
            ConflictError: If the email or identity is taken by a live account.
        """
        self.purge_expired_signups()
        self.check_available(nom, prenom, email)

        code = generate_verification_code()
        now = utcnow()
        model = UserModel(
            user_id=str(uuid.uuid4()),
            nom=normalize_nom(nom),
            prenom=normalize_prenom(prenom),
            identity_key=identity_key(nom, prenom),
            email=normalize_email(email),
            password_hash=hash_secret(password),
            status="eleve",
            active=True,
            created_at=now,
            is_verified=False,
            confirm=hash_secret(code),
            confirm_expires=minutes_from_now(VERIFICATION_CODE_TTL_MINUTES),
            signup_expires_at=minutes_from_now(SIGNUP_TTL_MINUTES),
        )
        self.db.add(model)
        try:
            self.db.commit()
        except IntegrityError as e:
            # lost a race against a concurrent signup with the same email/identity
            self.db.rollback()
            self.check_available(nom, prenom, email)
            raise ConflictError(EMAIL_TAKEN_MESSAGE) from e
        self.db.refresh(model)
        logger.info("Created pending account %s", model.user_id)

        return self._send_code(model, code, "signup")

    def cancel_signup(self, email: str) -> None:
        """Delete a still-pending account.

        Raises:
            NotFoundError: If there is no pending signup for this email.
        """
        model = self._get_live_by_email(email)
        if model is None or model.is_verified or model.signup_expires_at is None:
            raise NotFoundError("Aucune inscription en attente pour cet email.")
        user_id = model.user_id
        try:
            self.enrollments.unenroll_everywhere(user_id, commit=False)
            self.db.query(UserModel).filter(
                UserModel.user_id == user_id, UserModel.is_verified.is_(False)
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.expire_all()
        logger.info("Cancelled pending signup %s", user_id)

    # --- Verification ---

    def verify_email(
        self, email: str, code: str, class_id: Optional[str] = None
    ) -> VerifyOutcome:
        """Check the emailed code and mark the account verified.

        Args:
            email: Account email.
            code: Code as typed (case-insensitive).
            class_id: Set when the signup went through a join code; the
                matching seat is claimed in the same transaction.

        Returns:
            VerifyOutcome; ``already_verified`` for an idempotent retry.

        Raises:
            ValidationError: Unknown account, already verified or wrong code.
            ExpiredError: The code is past its expiry.
            SeatUnavailable, NoMatchingSeat: The claim failed.
        """
        model = self._get_live_by_email(email)
        if model is None:
            raise ValidationError(UNKNOWN_ACCOUNT_MESSAGE)
        if model.is_verified:
            return self._verified_retry(model, class_id)
        self._check_code(model, code)

        user_id, nom, prenom = model.user_id, model.nom, model.prenom
        claim = None
        try:
            if class_id:
                claim = self.enrollments.claim_and_enroll(
                    class_id, nom, prenom, user_id, commit=False
                )
            result = self.db.execute(
                update(UserModel)
                .where(
                    UserModel.user_id == user_id,
                    UserModel.is_verified.is_(False),
                    _live_account_clause(utcnow()),
                )
                .values(
                    is_verified=True,
                    confirm="",
                    confirm_expires=None,
                    signup_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # verified by a concurrent request, or the signup window closed
                self.db.rollback()
                model = self._get_live_by_email(email)
                if model is None:
                    raise ValidationError(UNKNOWN_ACCOUNT_MESSAGE)
                return self._verified_retry(model, class_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.expire_all()
        model = self._get_by_email(email)
        logger.info("Verified account %s (class=%s)", user_id, class_id)
        return VerifyOutcome(user=model_to_user(model), claim=claim)

    def resend_code(self, email: str) -> SignupOutcome:
        """Issue a fresh verification code for a pending account."""
        model = self._get_live_by_email(email)
        if model is None:
            raise ValidationError(UNKNOWN_ACCOUNT_MESSAGE)
        if model.is_verified:
            raise ValidationError(ALREADY_VERIFIED_MESSAGE)
        code = self._store_new_code(model)
        return self._send_code(model, code, "signup")

    # --- Password reset ---

    def start_password_reset(self, email: str) -> SignupOutcome:
        """Email a reset code to a verified account."""
        model = self._get_by_email(email)
        if model is None or not model.is_verified:
            raise ValidationError("Compte inexistant ou non vérifié.")
        code = self._store_new_code(model)
        return self._send_code(model, code, "reset")

    def resend_password_reset(self, email: str) -> SignupOutcome:
        return self.start_password_reset(email)

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        """Set a new password after checking the reset code.

        Raises:
            ValidationError: Unknown account or wrong code.
            ExpiredError: The code is past its expiry.
        """
        model = self._get_by_email(email)
        if model is None or not model.is_verified:
            raise ValidationError("Compte inexistant ou non vérifié.")
        self._check_code(model, code)
        model.password_hash = hash_secret(new_password)
        model.confirm = ""
        model.confirm_expires = None
        self.db.commit()
        logger.info("Password reset for user %s", model.user_id)

    # --- Internal ---

    def _get_by_email(self, email: str) -> Optional[UserModel]:
        return (
            self.db.query(UserModel)
            .filter(UserModel.email == normalize_email(email))
            .first()
        )

    def _get_live_by_email(self, email: str) -> Optional[UserModel]:
        """Like ``_get_by_email``, but a pending account past its window is gone."""
        return (
            self.db.query(UserModel)
            .filter(
                UserModel.email == normalize_email(email),
                _live_account_clause(utcnow()),
            )
            .first()
        )

    def _check_code(self, model: UserModel, code: str) -> None:
        if model.confirm_expires is None or model.confirm_expires < utcnow():
            raise ExpiredError(CODE_EXPIRED_MESSAGE)
        if not verify_secret((code or "").strip().upper(), model.confirm):
            raise ValidationError(WRONG_CODE_MESSAGE)

    def _verified_retry(
        self, model: Optional[UserModel], class_id: Optional[str]
    ) -> VerifyOutcome:
        """A verified account may repeat a join-code verification it already completed."""
        if model is not None and class_id and self.enrollments.roster.seat_owned_by(
            class_id, model.nom, model.prenom, model.user_id
        ):
            self.enrollments.enroll(model.user_id, class_id)
            return VerifyOutcome(user=model_to_user(model), already_verified=True)
        raise ValidationError(ALREADY_VERIFIED_MESSAGE)

    def _store_new_code(self, model: UserModel) -> str:
        code = generate_verification_code()
        model.confirm = hash_secret(code)
        model.confirm_expires = minutes_from_now(VERIFICATION_CODE_TTL_MINUTES)
        self.db.commit()
        return code

    def _send_code(self, model: UserModel, code: str, purpose: str) -> SignupOutcome:
        user = model_to_user(model)
        subject, text, html = build_code_email(model.prenom.capitalize(), code, purpose)
        try:
            message_id = self.email_sender.send(model.email, subject, text, html)
        except EmailDeliveryError as e:
            logger.warning("Code email for %s not delivered: %s", model.user_id, e)
            return SignupOutcome(user=user, notification_error=str(e))
        return SignupOutcome(user=user, message_id=message_id)
