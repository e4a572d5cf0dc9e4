"""Account routes for a logged-in user."""

import logging

from fastapi import APIRouter, Depends, Response

from api.routes.auth import clear_auth_cookies, get_current_identity
from core.dependencies import EnrollmentManagerDep, UserManagerDep
from schemas.auth import ChangePasswordRequest, LeaveClassRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/me", summary="Utilisateur courant")
def me(identity: dict = Depends(get_current_identity)) -> dict:
    return {
        "email": identity.get("email"),
        "nom": identity.get("nom"),
        "prenom": identity.get("prenom"),
        "role": identity.get("role"),
    }


@router.post("/change-password", summary="Changer le mot de passe")
def change_password(
    req: ChangePasswordRequest,
    user_manager: UserManagerDep,
    identity: dict = Depends(get_current_identity),
) -> dict:
    user_manager.change_password(identity["userId"], req.newPassword)
    return {"message": "Mot de passe mis à jour avec succès."}


@router.post("/leave-class", summary="Quitter une classe")
def leave_class(
    req: LeaveClassRequest,
    enrollments: EnrollmentManagerDep,
    identity: dict = Depends(get_current_identity),
) -> dict:
    """Leave a class: the seat is freed and the membership removed."""
    enrollments.leave_class(identity["userId"], req.classId)
    return {"message": "Désinscription réalisée"}


@router.post("/delete-account", summary="Supprimer son compte")
def delete_account(
    response: Response,
    user_manager: UserManagerDep,
    identity: dict = Depends(get_current_identity),
) -> dict:
    """Delete the caller's account; class administrators are refused."""
    user_manager.delete_account(identity["userId"])
    clear_auth_cookies(response)
    return {"message": "Suppression de compte réalisée"}
