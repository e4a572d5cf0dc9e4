"""Authentication routes.

This module handles HTTP endpoints for signup (with or without a teacher
join code), email verification, login with class selection, and password
reset. Sessions travel in HTTP-only cookies: ``pending_login`` between the
two login steps, then ``jwt`` once a class has been chosen.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError, jwt

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ACCESS_TOKEN_SECRET,
    JWT_ALGORITHM,
    PENDING_LOGIN_COOKIE_NAME,
    PENDING_LOGIN_EXPIRE_MINUTES,
    PENDING_LOGIN_PURPOSE,
    SESSION_COOKIE_NAME,
    cookie_options,
)
from core.dependencies import (
    ClassManagerDep,
    EnrollmentManagerDep,
    RosterManagerDep,
    SignupManagerDep,
    UserManagerDep,
)
from core.exceptions import AuthError, ForbiddenError, NotFoundError, ValidationError
from models.enrollment import ROLE_ADMIN
from schemas.auth import (
    CheckStudentRequest,
    EmailOnlyRequest,
    JoinExistingRequest,
    LoginRequest,
    ResetPasswordRequest,
    SelectClassRequest,
    SignupCreateRequest,
    SignupRequest,
    TeacherCodeRequest,
    VerifyEmailRequest,
)
from schemas.user import ClassSummary
from utils.converters import seat_to_available
from utils.normalization import identity_key
from utils.signup_manager import SignupOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

PENDING_EXPIRED_MESSAGE = "Session de connexion expirée"
NO_CLASS_MESSAGE = "Cet utilisateur n'est inscrit à aucun cours"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT.

    Args:
        data: Claims to encode.
        expires_delta: Lifetime; defaults to the session lifetime.

    Returns:
        Encoded JWT string.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(pytz.utc) + expires_delta
    else:
        expire = datetime.now(pytz.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, ACCESS_TOKEN_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT.

    Raises:
        AuthError: If the token is expired or invalid.
    """
    try:
        return jwt.decode(token, ACCESS_TOKEN_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthError("Session expirée")
    except JWTError:
        raise AuthError("Token invalide")


def get_current_identity(request: Request) -> dict:
    """Decoded session cookie of the caller.

    Raises:
        AuthError: If the cookie is missing, expired or invalid, or holds a
            class-selection token instead of a session.
    """
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise AuthError("Non autorisé - token manquant")
    payload = decode_token(token)
    if not payload.get("userId") or payload.get("purpose") == PENDING_LOGIN_PURPOSE:
        raise AuthError("Token invalide")
    return payload


def delete_cookie(response: Response, name: str) -> None:
    options = cookie_options()
    response.delete_cookie(
        name,
        path=options["path"],
        secure=options["secure"],
        httponly=options["httponly"],
        samesite=options["samesite"],
    )


def clear_auth_cookies(response: Response) -> None:
    for name in (SESSION_COOKIE_NAME, PENDING_LOGIN_COOKIE_NAME):
        delete_cookie(response, name)


def _mail_payload(outcome: SignupOutcome) -> dict:
    payload = {
        "sendMail": outcome.sent,
        "email": outcome.user.email,
        "infoMail": outcome.message_id,
    }
    if not outcome.sent:
        payload["notificationError"] = outcome.notification_error
    return payload


# --- Signup ---


@router.post("/signup", status_code=status.HTTP_201_CREATED, summary="Inscription")
def signup(req: SignupRequest, signups: SignupManagerDep) -> dict:
    """Create an unverified account without a class and email its code."""
    outcome = signups.create_pending_account(req.nom, req.prenom, req.email, req.password)
    return _mail_payload(outcome)


@router.post("/signup/validate-teacher-code", summary="Valider un code professeur")
def validate_teacher_code(
    req: TeacherCodeRequest,
    class_manager: ClassManagerDep,
    roster: RosterManagerDep,
) -> dict:
    """Resolve a join code and list the seats still open to a new student."""
    class_model = class_manager.resolve_join_code(req.code)
    seats = roster.list_seats(class_model.class_id, available_only=True)
    return {
        "classId": class_model.class_id,
        "name": class_model.publicname,
        "students": [seat_to_available(s).model_dump() for s in seats],
    }


@router.post("/signup/check-student", summary="Vérifier un élève")
def check_student(
    req: CheckStudentRequest,
    roster: RosterManagerDep,
    signups: SignupManagerDep,
) -> dict:
    """Check the names against the roster before asking for credentials.

    Fails with ``redirect`` when the names are unknown or the seat is taken,
    and with 409 when the person or email already has an account.
    """
    roster.find_matching_seat(req.classId, req.nom, req.prenom)
    signups.purge_expired_signups()
    signups.check_available(req.nom, req.prenom, req.email)
    return {"success": True}


@router.post("/signup/create", status_code=status.HTTP_201_CREATED, summary="Inscription élève")
def signup_create(
    req: SignupCreateRequest,
    roster: RosterManagerDep,
    signups: SignupManagerDep,
) -> dict:
    """Create the account of a student recognized on a roster.

    The seat is only claimed when the email is verified.
    """
    roster.find_matching_seat(req.classId, req.nom, req.prenom)
    outcome = signups.create_pending_account(req.nom, req.prenom, req.email, req.password)
    payload = _mail_payload(outcome)
    payload["classId"] = req.classId
    return payload


@router.post("/signup/cancel", summary="Annuler une inscription")
def signup_cancel(req: EmailOnlyRequest, signups: SignupManagerDep) -> dict:
    signups.cancel_signup(req.email)
    return {"message": "Inscription annulée"}


@router.post("/signup/join-existing", summary="Rejoindre une classe avec un compte existant")
def join_existing(
    req: JoinExistingRequest,
    user_manager: UserManagerDep,
    enrollments: EnrollmentManagerDep,
) -> dict:
    """Claim a seat for an existing verified account.

    Safe to repeat: a second call for a seat the account already holds
    succeeds with ``alreadyOwned``.
    """
    model = user_manager.authenticate(req.email, req.password)
    if identity_key(req.nom, req.prenom) != model.identity_key:
        raise ValidationError("Les nom et prénom ne correspondent pas à ce compte")
    claim = enrollments.claim_and_enroll(req.classId, model.nom, model.prenom, model.user_id)
    return {
        "success": True,
        "message": "Classe rejointe",
        "classId": claim.class_id,
        "alreadyOwned": claim.already_owned,
    }


# --- Verification ---


@router.post("/verifmail", summary="Vérifier l'email")
def verify_email(req: VerifyEmailRequest, signups: SignupManagerDep) -> dict:
    outcome = signups.verify_email(req.email, req.code, req.classId)
    payload = {"success": True, "message": "Email vérifié avec succès."}
    if outcome.claim is not None or outcome.already_verified:
        payload["classId"] = req.classId
    return payload


@router.post("/resend-code", summary="Renvoyer le code")
def resend_code(req: EmailOnlyRequest, signups: SignupManagerDep) -> dict:
    return _mail_payload(signups.resend_code(req.email))


# --- Login ---


@router.post("/login", summary="Connexion")
def login(
    req: LoginRequest,
    response: Response,
    user_manager: UserManagerDep,
    class_manager: ClassManagerDep,
    enrollments: EnrollmentManagerDep,
) -> dict:
    """Check credentials and list the classes the user can enter.

    Sets the short-lived ``pending_login`` cookie consumed by
    ``/login/select-class``.
    """
    model = user_manager.authenticate(req.email, req.password)

    teachers_classes, followed_classes = [], []
    for enrollment in enrollments.list_enrollments(model.user_id):
        try:
            class_model = class_manager.get_active_class(enrollment.class_id)
        except NotFoundError:
            continue
        summary = ClassSummary(id=class_model.class_id, name=class_model.publicname).model_dump()
        if enrollment.role == ROLE_ADMIN:
            teachers_classes.append(summary)
        else:
            followed_classes.append(summary)

    if not teachers_classes and not followed_classes:
        clear_auth_cookies(response)
        return {"message": NO_CLASS_MESSAGE, "teachersClasses": [], "followedClasses": []}

    pending = create_access_token(
        {"userId": model.user_id, "email": model.email, "purpose": PENDING_LOGIN_PURPOSE},
        expires_delta=timedelta(minutes=PENDING_LOGIN_EXPIRE_MINUTES),
    )
    response.set_cookie(
        PENDING_LOGIN_COOKIE_NAME,
        pending,
        **cookie_options(PENDING_LOGIN_EXPIRE_MINUTES * 60),
    )
    logger.info("User %s logged in, awaiting class selection", model.user_id)
    return {
        "message": "Choisissez une classe",
        "teachersClasses": teachers_classes,
        "followedClasses": followed_classes,
    }


@router.post("/login/select-class", summary="Choisir une classe")
def select_class(
    req: SelectClassRequest,
    request: Request,
    response: Response,
    user_manager: UserManagerDep,
    class_manager: ClassManagerDep,
    enrollments: EnrollmentManagerDep,
):
    """Exchange the pending-login cookie for a class-scoped session."""
    token = request.cookies.get(PENDING_LOGIN_COOKIE_NAME)
    if not token:
        raise AuthError(PENDING_EXPIRED_MESSAGE)
    try:
        pending = decode_token(token)
    except AuthError:
        expired = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"message": PENDING_EXPIRED_MESSAGE},
        )
        clear_auth_cookies(expired)
        return expired
    if pending.get("purpose") != PENDING_LOGIN_PURPOSE:
        raise ForbiddenError("Session de connexion invalide")

    model = user_manager.get_model_by_id(pending.get("userId", ""))
    if model is None or not model.is_verified or not model.active:
        raise AuthError("Compte inexistant ou non vérifié")

    class_model = class_manager.get_active_class(req.classId)
    role = enrollments.role_in(model.user_id, class_model.class_id)
    if role is None:
        raise ForbiddenError("Classe non autorisée")

    identity = {
        "userId": model.user_id,
        "email": model.email,
        "nom": model.nom,
        "prenom": model.prenom,
        "role": role,
        "classId": class_model.class_id,
        "name": class_model.publicname,
        "directory": class_model.directoryname,
        "adminRepertoires": class_manager.admin_repertoire_slugs(
            model.user_id, class_model.class_id
        ),
    }
    response.set_cookie(
        SESSION_COOKIE_NAME,
        create_access_token(identity),
        **cookie_options(ACCESS_TOKEN_EXPIRE_MINUTES * 60),
    )
    delete_cookie(response, PENDING_LOGIN_COOKIE_NAME)
    logger.info("User %s selected class %s as %s", model.user_id, class_model.class_id, role)
    return {"message": "Connexion réussie", **identity}


@router.post("/logout", summary="Déconnexion")
def logout(response: Response) -> dict:
    clear_auth_cookies(response)
    return {"message": "Déconnexion réussie"}


@router.get("/me", summary="Utilisateur courant")
def me(request: Request) -> dict:
    identity = get_current_identity(request)
    return {
        "user": {
            "email": identity.get("email"),
            "nom": identity.get("nom"),
            "prenom": identity.get("prenom"),
            "role": identity.get("role"),
            "classId": identity.get("classId"),
            "name": identity.get("name"),
        }
    }


# --- Password reset ---


@router.post("/forgot", summary="Mot de passe oublié")
def forgot(req: EmailOnlyRequest, signups: SignupManagerDep) -> dict:
    return _mail_payload(signups.start_password_reset(req.email))


@router.post("/resend-forgot", summary="Renvoyer le code de réinitialisation")
def resend_forgot(req: EmailOnlyRequest, signups: SignupManagerDep) -> dict:
    return _mail_payload(signups.resend_password_reset(req.email))


@router.post("/reset-password", summary="Réinitialiser le mot de passe")
def reset_password(req: ResetPasswordRequest, signups: SignupManagerDep) -> dict:
    signups.reset_password(req.email, req.code, req.newPassword)
    return {"success": True, "message": "Mot de passe réinitialisé avec succès."}
