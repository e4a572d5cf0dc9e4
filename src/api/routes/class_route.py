"""Class management routes.

Everything below ``/api/classes/{class_id}`` requires an admin enrollment
in that class, except the routes under a single repertoire, which its
assigned teachers may also use. Creating a class requires the ``prof``
account status.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status

from api.routes.auth import get_current_identity
from core.dependencies import (
    ClassManagerDep,
    EnrollmentManagerDep,
    RosterManagerDep,
    UserManagerDep,
)
from core.exceptions import ForbiddenError
from models.enrollment import ROLE_ADMIN
from schemas.class_schema import (
    AddSeatRequest,
    ClassInfo,
    ClassMemberInfo,
    CreateClassRequest,
    ImportReport,
    JoinCodeInfo,
    RepertoireInfo,
    RepertoireRequest,
    RotateCodeRequest,
    SeatInfo,
    UpdateClassRequest,
)
from utils.class_manager import check_class_id
from utils.clock import utcnow
from utils.converters import seat_to_info
from utils.csv_roster import parse_roster_csv
from utils.roster_manager import SeatRef

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classes", tags=["Class"])


def _build_class_info(model, role_in_class: Optional[str] = None) -> ClassInfo:
    return ClassInfo(
        class_id=model.class_id,
        directoryname=model.directoryname,
        publicname=model.publicname,
        active=model.active,
        role_in_class=role_in_class,
    )


def _build_code_info(model) -> JoinCodeInfo:
    valid = bool(model.code) and model.code_expires is not None and model.code_expires > utcnow()
    return JoinCodeInfo(code=model.code or "", expires_at=model.code_expires, valid=valid)


def _build_repertoire_info(repertoire) -> RepertoireInfo:
    return RepertoireInfo(
        name=repertoire.name,
        slug=repertoire.slug,
        teacher_ids=[t.user_id for t in repertoire.teachers],
    )


def require_class_admin(
    class_id: str,
    enrollments: EnrollmentManagerDep,
    identity: dict = Depends(get_current_identity),
) -> dict:
    """Caller identity, once checked as admin of ``class_id``."""
    enrollments.require_admin(identity["userId"], class_id)
    return identity


def require_repertoire_admin(
    class_id: str,
    name: str,
    enrollments: EnrollmentManagerDep,
    class_manager: ClassManagerDep,
    identity: dict = Depends(get_current_identity),
) -> dict:
    """Caller identity, once checked as class admin or teacher of repertoire ``name``.

    Assignments are read from the database, not from the token's
    ``adminRepertoires``.
    """
    user_id = identity["userId"]
    if enrollments.role_in(user_id, check_class_id(class_id)) == ROLE_ADMIN:
        return identity
    if not class_manager.is_repertoire_teacher(class_id, name, user_id):
        raise ForbiddenError("Accès réservé")
    return identity


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ClassInfo, summary="Créer une classe")
def create_class(
    req: CreateClassRequest,
    class_manager: ClassManagerDep,
    enrollments: EnrollmentManagerDep,
    user_manager: UserManagerDep,
    identity: dict = Depends(get_current_identity),
) -> ClassInfo:
    """Create a class; the creator becomes its admin."""
    user = user_manager.get_user_by_id(identity["userId"])
    if user.status != "prof":
        raise ForbiddenError("Seuls les professeurs peuvent créer une classe")
    class_model = class_manager.create_class(req.directoryname, req.publicname)
    enrollments.grant_admin(user.user_id, class_model.class_id)
    return _build_class_info(class_model, role_in_class=ROLE_ADMIN)


@router.patch("/{class_id}", response_model=ClassInfo, summary="Activer/désactiver une classe")
def update_class(
    class_id: str,
    req: UpdateClassRequest,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> ClassInfo:
    model = class_manager.set_active(class_id, req.active)
    return _build_class_info(model, role_in_class=ROLE_ADMIN)


# --- Roster ---


@router.get("/{class_id}/students", response_model=List[SeatInfo], summary="Liste des élèves")
def list_students(
    class_id: str,
    roster: RosterManagerDep,
    identity: dict = Depends(require_class_admin),
) -> List[SeatInfo]:
    return [seat_to_info(seat) for seat in roster.list_seats(class_id)]


@router.post(
    "/{class_id}/students",
    status_code=status.HTTP_201_CREATED,
    response_model=SeatInfo,
    summary="Ajouter un élève",
)
def add_student(
    class_id: str,
    req: AddSeatRequest,
    roster: RosterManagerDep,
    identity: dict = Depends(require_class_admin),
) -> SeatInfo:
    seat = roster.add_seat(class_id, req.nom, req.prenom, req.email or "")
    return seat_to_info(seat)


@router.post("/{class_id}/students/import", response_model=ImportReport, summary="Importer une liste CSV")
def import_students(
    class_id: str,
    roster: RosterManagerDep,
    file: UploadFile = File(...),
    identity: dict = Depends(require_class_admin),
) -> ImportReport:
    """Bulk-add seats from a CSV upload. Existing names are skipped."""
    rows, parse_errors = parse_roster_csv(file.file.read())
    report = roster.import_rows(class_id, rows)
    return ImportReport(
        added=report["added"],
        skipped=report["skipped"],
        errors=parse_errors + report["errors"],
    )


@router.delete("/{class_id}/students/{seat_ref}", summary="Supprimer une place")
def delete_student(
    class_id: str,
    seat_ref: str,
    enrollments: EnrollmentManagerDep,
    identity: dict = Depends(require_class_admin),
) -> dict:
    """Delete a seat. A student holding it is unenrolled from the class."""
    enrollments.remove_seat(class_id, SeatRef.parse(seat_ref))
    return {"success": True, "message": "Place supprimée"}


@router.post("/{class_id}/students/{seat_ref}/release", summary="Libérer une place")
def release_student(
    class_id: str,
    seat_ref: str,
    enrollments: EnrollmentManagerDep,
    identity: dict = Depends(require_class_admin),
) -> dict:
    """Unenroll the seat's student; the seat stays on the roster."""
    user_id = enrollments.release_seat(class_id, SeatRef.parse(seat_ref))
    return {"success": True, "message": "Place libérée", "userId": user_id}


# --- Join code ---


@router.get("/{class_id}/code", response_model=JoinCodeInfo, summary="Code de la classe")
def get_code(
    class_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> JoinCodeInfo:
    return _build_code_info(class_manager.get_class(class_id))


@router.post("/{class_id}/code", response_model=JoinCodeInfo, summary="Générer un nouveau code")
def rotate_code(
    class_id: str,
    class_manager: ClassManagerDep,
    req: Optional[RotateCodeRequest] = None,
    identity: dict = Depends(require_class_admin),
) -> JoinCodeInfo:
    """Replace the join code; the previous one stops working immediately."""
    req = req or RotateCodeRequest()
    model = class_manager.rotate_join_code(class_id, req.expires_in_minutes)
    return _build_code_info(model)


@router.delete("/{class_id}/code", summary="Supprimer le code")
def clear_code(
    class_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> dict:
    class_manager.clear_join_code(class_id)
    return {"success": True}


# --- Visibility exceptions ---


@router.put("/{class_id}/visibility/{user_id}", summary="Accorder une exception de visibilité")
def add_visibility(
    class_id: str,
    user_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> dict:
    class_manager.add_visibility_exception(class_id, user_id)
    return {"visibleTo": class_manager.list_visibility_exceptions(class_id)}


@router.delete("/{class_id}/visibility/{user_id}", summary="Retirer une exception de visibilité")
def remove_visibility(
    class_id: str,
    user_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> dict:
    class_manager.remove_visibility_exception(class_id, user_id)
    return {"visibleTo": class_manager.list_visibility_exceptions(class_id)}


# --- Repertoires ---


@router.get("/{class_id}/repertoires", response_model=List[RepertoireInfo], summary="Répertoires")
def list_repertoires(
    class_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> List[RepertoireInfo]:
    return [_build_repertoire_info(r) for r in class_manager.list_repertoires(class_id)]


@router.post(
    "/{class_id}/repertoires",
    status_code=status.HTTP_201_CREATED,
    response_model=RepertoireInfo,
    summary="Créer un répertoire",
)
def add_repertoire(
    class_id: str,
    req: RepertoireRequest,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> RepertoireInfo:
    return _build_repertoire_info(class_manager.add_repertoire(class_id, req.name))


@router.get("/{class_id}/repertoires/{name}", response_model=RepertoireInfo, summary="Détail d'un répertoire")
def get_repertoire(
    class_id: str,
    name: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_repertoire_admin),
) -> RepertoireInfo:
    return _build_repertoire_info(class_manager.get_repertoire(class_id, name))


@router.put(
    "/{class_id}/repertoires/{name}/teachers/{user_id}",
    response_model=RepertoireInfo,
    summary="Assigner un enseignant",
)
def assign_teacher(
    class_id: str,
    name: str,
    user_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_repertoire_admin),
) -> RepertoireInfo:
    class_manager.assign_repertoire_teacher(class_id, name, user_id)
    return _build_repertoire_info(class_manager.get_repertoire(class_id, name))


@router.delete(
    "/{class_id}/repertoires/{name}/teachers/{user_id}",
    response_model=RepertoireInfo,
    summary="Retirer un enseignant",
)
def unassign_teacher(
    class_id: str,
    name: str,
    user_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_repertoire_admin),
) -> RepertoireInfo:
    class_manager.unassign_repertoire_teacher(class_id, name, user_id)
    return _build_repertoire_info(class_manager.get_repertoire(class_id, name))


# --- Members ---


@router.get("/{class_id}/members", response_model=List[ClassMemberInfo], summary="Membres de la classe")
def list_class_members(
    class_id: str,
    class_manager: ClassManagerDep,
    identity: dict = Depends(require_class_admin),
) -> List[ClassMemberInfo]:
    return [ClassMemberInfo(**member) for member in class_manager.list_members(class_id)]
