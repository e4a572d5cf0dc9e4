"""Pending accounts, email verification and password reset."""

import threading
from datetime import timedelta

import pytest

from conftest import PASSWORD, make_class, make_user, seat_state
from core.database import SessionLocal
from core.exceptions import ConflictError, ExpiredError, NotFoundError, SeatUnavailable, ValidationError
from models import EnrollmentModel, UserModel
from utils.clock import utcnow
from utils.enrollment_manager import EnrollmentManager
from utils.signup_manager import (
    ALREADY_VERIFIED_MESSAGE,
    CODE_EXPIRED_MESSAGE,
    EMAIL_TAKEN_MESSAGE,
    UNKNOWN_ACCOUNT_MESSAGE,
    WRONG_CODE_MESSAGE,
    SignupManager,
)
from utils.user_manager import UserManager

EMAIL = "elodie.dupont@test.com"
# "0" is not in the code alphabet
WRONG_CODE = "0000"


def _fetch(db, email=EMAIL):
    db.expire_all()
    return db.query(UserModel).filter(UserModel.email == email).first()


def _signup(db, mailer, nom="Dupont", prenom="Élodie", email=EMAIL):
    outcome = SignupManager(db, mailer).create_pending_account(nom, prenom, email, PASSWORD)
    return outcome, mailer.last_code()


def test_create_pending_account_sends_code(db, mailer):
    outcome, code = _signup(db, mailer, email="Elodie.Dupont@Test.com")
    assert outcome.sent and outcome.message_id == "<msg-1@test>"
    assert outcome.user.email == EMAIL
    assert outcome.user.is_verified is False
    assert outcome.user.signup_expires_at is not None
    assert len(code) == 4

    model = _fetch(db)
    assert (model.nom, model.prenom) == ("DUPONT", "elodie")
    assert model.confirm != code


def test_duplicate_email_is_rejected(db, mailer):
    _signup(db, mailer)
    with pytest.raises(ConflictError) as exc:
        SignupManager(db, mailer).create_pending_account("Martin", "Paul", EMAIL, PASSWORD)
    assert exc.value.message == EMAIL_TAKEN_MESSAGE


def test_duplicate_identity_is_rejected(db, mailer):
    make_user(db)
    with pytest.raises(ConflictError) as exc:
        SignupManager(db, mailer).create_pending_account("DUPONT", "élodie", "autre@test.com", PASSWORD)
    assert exc.value.message == "L'utilisateur DUPONT elodie est déjà inscrit"


def test_identity_taken_during_signup_is_reported_as_such(db, mailer, monkeypatch):
    make_user(db)
    real_identity_in_use = SignupManager.identity_in_use
    calls = []

    def misses_first_check(self, nom, prenom):
        # the first check runs before the competing account is visible
        calls.append((nom, prenom))
        return len(calls) > 1 and real_identity_in_use(self, nom, prenom)

    monkeypatch.setattr(SignupManager, "identity_in_use", misses_first_check)
    with pytest.raises(ConflictError) as exc:
        SignupManager(db, mailer).create_pending_account("Dupont", "Elodie", "autre@test.com", PASSWORD)
    assert exc.value.message == "L'utilisateur DUPONT elodie est déjà inscrit"
    assert len(calls) == 2
    assert mailer.sent == []


def test_expired_pending_account_does_not_block_signup(db, mailer):
    stale = make_user(db, verified=False)
    stale.signup_expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    manager = SignupManager(db, mailer)
    assert manager.email_in_use(EMAIL) is False
    outcome = manager.create_pending_account("Dupont", "Elodie", EMAIL, PASSWORD)
    assert outcome.user.user_id != f"user-{EMAIL}"
    assert db.query(UserModel).count() == 1


def test_purge_removes_only_expired_pending_accounts(db, mailer):
    expired = make_user(db, verified=False)
    expired.signup_expires_at = utcnow() - timedelta(minutes=1)
    make_user(db, "Martin", "Paul", "paul@test.com", verified=False)
    make_user(db, "Roux", "Ana", "ana@test.com")
    db.commit()

    assert SignupManager(db, mailer).purge_expired_signups() == 1
    emails = sorted(row.email for row in db.query(UserModel.email).all())
    assert emails == ["ana@test.com", "paul@test.com"]


def test_verify_without_class(db, mailer):
    _, code = _signup(db, mailer)
    outcome = SignupManager(db, mailer).verify_email(EMAIL, code.lower())
    assert outcome.user.is_verified is True
    assert outcome.claim is None
    model = _fetch(db)
    assert model.signup_expires_at is None
    assert model.confirm == ""


def test_wrong_code_keeps_account_pending(db, mailer):
    _signup(db, mailer)
    with pytest.raises(ValidationError) as exc:
        SignupManager(db, mailer).verify_email(EMAIL, WRONG_CODE)
    assert exc.value.message == WRONG_CODE_MESSAGE
    assert _fetch(db).is_verified is False


def test_expired_code(db, mailer):
    _, code = _signup(db, mailer)
    model = _fetch(db)
    model.confirm_expires = utcnow() - timedelta(seconds=1)
    db.commit()
    with pytest.raises(ExpiredError):
        SignupManager(db, mailer).verify_email(EMAIL, code)


def test_expired_code_with_class_claims_nothing(db, mailer):
    class_id = make_class(db)
    _, code = _signup(db, mailer)
    model = _fetch(db)
    model.confirm_expires = utcnow() - timedelta(seconds=1)
    db.commit()

    with pytest.raises(ExpiredError) as exc:
        SignupManager(db, mailer).verify_email(EMAIL, code, class_id=class_id)
    assert exc.value.message == CODE_EXPIRED_MESSAGE

    model = _fetch(db)
    assert model.is_verified is False
    assert db.query(EnrollmentModel).filter_by(user_id=model.user_id).count() == 0
    assert seat_state(db, class_id) == [("DUPONT", True, None)]


def test_pending_account_past_its_window_cannot_be_revived(db, mailer):
    class_id = make_class(db)
    _, code = _signup(db, mailer)
    model = _fetch(db)
    model.signup_expires_at = utcnow() - timedelta(minutes=5)
    db.commit()

    manager = SignupManager(db, mailer)
    with pytest.raises(ValidationError) as exc:
        manager.resend_code(EMAIL)
    assert exc.value.message == UNKNOWN_ACCOUNT_MESSAGE
    assert len(mailer.sent) == 1

    with pytest.raises(ValidationError) as exc:
        manager.verify_email(EMAIL, code, class_id=class_id)
    assert exc.value.message == UNKNOWN_ACCOUNT_MESSAGE
    assert _fetch(db).is_verified is False
    assert seat_state(db, class_id) == [("DUPONT", True, None)]

    with pytest.raises(NotFoundError):
        manager.cancel_signup(EMAIL)


def test_unknown_account(db, mailer):
    with pytest.raises(ValidationError):
        SignupManager(db, mailer).verify_email("ghost@test.com", "ABCD")


def test_verify_with_class_claims_and_enrolls(db, mailer):
    class_id = make_class(db)
    _, code = _signup(db, mailer)
    outcome = SignupManager(db, mailer).verify_email(EMAIL, code, class_id=class_id)

    user_id = outcome.user.user_id
    assert outcome.claim.seat_key == "key-0"
    assert outcome.user.enrollments[0].class_id == class_id
    assert seat_state(db, class_id) == [("DUPONT", False, user_id)]


def test_failed_claim_leaves_account_unverified(db, mailer):
    class_id = make_class(db)
    other = make_user(db, email="autre@test.com", nom="Dupont", prenom="Elodie")
    EnrollmentManager(db).claim_and_enroll(class_id, "Dupont", "Elodie", other.user_id)
    # free the identity so only the seat stands in the way
    other.identity_key = "someone-else"
    db.commit()

    _, code = _signup(db, mailer)
    with pytest.raises(SeatUnavailable):
        SignupManager(db, mailer).verify_email(EMAIL, code, class_id=class_id)

    model = _fetch(db)
    assert model.is_verified is False
    assert db.query(EnrollmentModel).filter_by(user_id=model.user_id).count() == 0
    assert seat_state(db, class_id) == [("DUPONT", False, other.user_id)]


def test_verified_retry_with_owned_seat_is_idempotent(db, mailer):
    class_id = make_class(db)
    _, code = _signup(db, mailer)
    manager = SignupManager(db, mailer)
    first = manager.verify_email(EMAIL, code, class_id=class_id)
    again = manager.verify_email(EMAIL, code, class_id=class_id)

    assert again.already_verified is True
    assert again.user.user_id == first.user.user_id
    assert seat_state(db, class_id) == [("DUPONT", False, first.user.user_id)]


def test_concurrent_verifications_of_one_account(db, mailer):
    class_id = make_class(db)
    _, code = _signup(db, mailer)
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt():
        session = SessionLocal()
        try:
            barrier.wait()
            outcomes.append(
                SignupManager(session, mailer).verify_email(EMAIL, code, class_id=class_id)
            )
        finally:
            session.close()

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == 2
    assert sorted(o.already_verified for o in outcomes) == [False, True]
    model = _fetch(db)
    assert model.is_verified is True
    assert db.query(EnrollmentModel).filter_by(user_id=model.user_id).count() == 1
    assert seat_state(db, class_id) == [("DUPONT", False, model.user_id)]


def test_verified_retry_without_class(db, mailer):
    _, code = _signup(db, mailer)
    manager = SignupManager(db, mailer)
    manager.verify_email(EMAIL, code)
    with pytest.raises(ValidationError) as exc:
        manager.verify_email(EMAIL, code)
    assert exc.value.message == ALREADY_VERIFIED_MESSAGE


def test_failed_email_is_reported_not_raised(db, mailer):
    mailer.fail = True
    outcome = SignupManager(db, mailer).create_pending_account("Dupont", "Elodie", EMAIL, PASSWORD)
    assert outcome.sent is False
    assert outcome.notification_error == "SMTP unavailable"
    assert _fetch(db) is not None


def test_resend_replaces_previous_code(db, mailer):
    _, first = _signup(db, mailer)
    manager = SignupManager(db, mailer)
    manager.resend_code(EMAIL)
    second = mailer.last_code(EMAIL)
    if first != second:
        with pytest.raises(ValidationError):
            manager.verify_email(EMAIL, first)
    assert manager.verify_email(EMAIL, second).user.is_verified is True
    with pytest.raises(ValidationError):
        manager.resend_code(EMAIL)


def test_cancel_signup(db, mailer):
    _signup(db, mailer)
    manager = SignupManager(db, mailer)
    manager.cancel_signup(EMAIL)
    assert _fetch(db) is None
    with pytest.raises(NotFoundError):
        manager.cancel_signup(EMAIL)


def test_cancel_refuses_verified_accounts(db, mailer):
    make_user(db)
    with pytest.raises(NotFoundError):
        SignupManager(db, mailer).cancel_signup(EMAIL)


def test_password_reset(db, mailer):
    make_user(db)
    manager = SignupManager(db, mailer)
    assert manager.start_password_reset(EMAIL).sent
    code = mailer.last_code(EMAIL)
    assert "Réinitialisation" in mailer.sent[-1]["subject"]

    with pytest.raises(ValidationError):
        manager.reset_password(EMAIL, WRONG_CODE, "Nouveau!123")
    manager.reset_password(EMAIL, code, "Nouveau!123")

    users = UserManager(db)
    assert users.authenticate(EMAIL, "Nouveau!123").email == EMAIL
    # the code is single use
    with pytest.raises(ExpiredError):
        manager.reset_password(EMAIL, code, "Encore!1234")


def test_password_reset_requires_verified_account(db, mailer):
    make_user(db, verified=False)
    with pytest.raises(ValidationError):
        SignupManager(db, mailer).start_password_reset(EMAIL)
    assert mailer.sent == []
