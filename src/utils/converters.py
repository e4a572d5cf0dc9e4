"""Conversions between ORM models, schemas and legacy documents."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from models.enrollment import ROLE_ADMIN, ROLE_USER
from models.seat import SeatModel
from models.user import UserModel
from schemas.class_schema import AvailableSeat, SeatInfo
from schemas.user import Enrollment, User

logger = logging.getLogger(__name__)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def seat_is_free(seat: SeatModel) -> bool:
    """Availability to a new claimant: ``free`` not False and no owner."""
    return seat.free is not False and seat.user_id is None


def merge_enrollments(entries: Iterable[Enrollment]) -> List[Enrollment]:
    """Collapse entries to one per class; admin supersedes user.

    Order of first appearance is kept.
    """
    merged: Dict[str, Enrollment] = {}
    for entry in entries:
        current = merged.get(entry.class_id)
        if current is None or entry.role == ROLE_ADMIN:
            merged[entry.class_id] = entry
    return list(merged.values())


def model_to_user(model: UserModel) -> User:
    return User(
        user_id=model.user_id,
        nom=model.nom,
        prenom=model.prenom,
        email=model.email,
        status=model.status,
        active=model.active,
        is_verified=model.is_verified,
        signup_expires_at=model.signup_expires_at,
        created_at=model.created_at,
        enrollments=merge_enrollments(
            Enrollment(class_id=e.class_id, role=e.role) for e in model.enrollments
        ),
    )


def seat_to_info(seat: SeatModel) -> SeatInfo:
    return SeatInfo(
        index=seat.position,
        seatKey=seat.seat_key,
        nom=seat.nom,
        prenom=seat.prenom,
        email=seat.email or "",
        free=seat_is_free(seat),
        userId=seat.user_id,
    )


def seat_to_available(seat: SeatModel) -> AvailableSeat:
    return AvailableSeat(
        index=seat.position, seatKey=seat.seat_key, nom=seat.nom, prenom=seat.prenom
    )


def follow_entry_to_enrollment(raw: Any) -> Optional[Enrollment]:
    """Normalize one legacy ``follow`` entry.

    Old documents store a bare class id (string or ``{"$oid": ...}``); newer
    ones store ``{"classe": <id>, "role": "user"|"admin"}``. Anything that
    does not carry a valid 24-hex class id is dropped.
    """
    role = ROLE_USER
    class_value = raw
    if isinstance(raw, dict) and "classe" in raw:
        class_value = raw.get("classe")
        if raw.get("role") == ROLE_ADMIN:
            role = ROLE_ADMIN
    if isinstance(class_value, dict):
        class_value = class_value.get("$oid")
    class_id = str(class_value).strip() if class_value else ""
    if not _OBJECT_ID_RE.match(class_id):
        logger.warning("Skipping legacy follow entry without a valid class id: %r", raw)
        return None
    return Enrollment(class_id=class_id.lower(), role=role)


def follow_to_enrollments(raw_follow: Any) -> List[Enrollment]:
    if not isinstance(raw_follow, list):
        return []
    entries = (follow_entry_to_enrollment(raw) for raw in raw_follow)
    return merge_enrollments(e for e in entries if e is not None)
