"""Roster store, seat matching and the seat-claim transaction.

The claim is the one place where concurrent requests race. It never reads a
seat and then writes it in a separate step: the availability rule is part
of the ``WHERE`` clause of a single ``UPDATE``, and the affected row count
says whether this request won. When it did not, a follow-up read decides
between "already yours" (idempotent success) and "taken by someone else"
(conflict).
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from core.exceptions import (
    ConflictError,
    InternalInconsistency,
    NoMatchingSeat,
    NotFoundError,
    SeatUnavailable,
    ValidationError,
)
from models.class_model import ClassModel
from models.seat import SeatModel
from utils.class_manager import INVALID_CODE_MESSAGE, check_class_id
from utils.clock import utcnow
from utils.converters import seat_is_free
from utils.normalization import match_key, normalize_email, normalize_nom, normalize_prenom

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatRef:
    """Address of a seat: stable key when present, else its roster index."""

    seat_key: Optional[str] = None
    position: Optional[int] = None

    @classmethod
    def parse(cls, raw: str) -> "SeatRef":
        """Parse a path segment: ``k:<seat_key>`` or a non-negative index."""
        raw = (raw or "").strip()
        if raw.startswith("k:") and len(raw) > 2:
            return cls(seat_key=raw[2:])
        if raw.isdigit():
            return cls(position=int(raw))
        raise ValidationError("Référence de place invalide")


@dataclass(frozen=True)
class ClaimResult:
    class_id: str
    seat_key: Optional[str]
    position: int
    already_owned: bool


def seat_available_for(seat: SeatModel, user_id: Optional[str]) -> bool:
    """Availability rule used at match time.

    A new claimant needs a free seat; a user retrying may also find the
    seat already bound to themselves.
    """
    if seat_is_free(seat):
        return True
    return user_id is not None and seat.user_id == user_id


def _available_clause(owner_id: Optional[str] = None):
    """SQL form of ``seat_available_for`` for the conditional write.

    Without ``owner_id`` only a free, unbound seat matches; a seat the
    claimant already holds matches only when ``owner_id`` names them.
    """
    free_and_unowned = and_(
        or_(SeatModel.free.is_(None), SeatModel.free.is_(True)),
        SeatModel.user_id.is_(None),
    )
    if owner_id is None:
        return free_and_unowned
    return or_(free_and_unowned, SeatModel.user_id == owner_id)


class RosterManager:
    """Manages roster seats and seat claims using SQLAlchemy."""

    def __init__(self, db: Session):
        self.db = db

    # --- Store ---

    def list_seats(self, class_id: str, available_only: bool = False) -> List[SeatModel]:
        class_id = check_class_id(class_id)
        seats = (
            self.db.query(SeatModel)
            .filter(SeatModel.class_id == class_id)
            .order_by(SeatModel.position, SeatModel.id)
            .all()
        )
        if available_only:
            return [s for s in seats if seat_is_free(s)]
        return seats

    def add_seat(self, class_id: str, nom: str, prenom: str, email: str = "") -> SeatModel:
        """Append a seat at the end of the roster.

        Raises:
            ValidationError: If a name is empty after normalization.
            ConflictError: If the class already has a seat for these names.
        """
        class_id = self._require_class(class_id)
        seat = self._build_seat(class_id, nom, prenom, email, self._existing_keys(class_id))
        self.db.add(seat)
        self.db.commit()
        self.db.refresh(seat)
        logger.info("Added seat %s to class %s at %d", seat.seat_key, class_id, seat.position)
        return seat

    def import_rows(
        self, class_id: str, rows: Iterable[Tuple[str, str, str]]
    ) -> Dict[str, object]:
        """Bulk-add roster rows; duplicates are skipped, bad rows reported."""
        class_id = self._require_class(class_id)
        existing = self._existing_keys(class_id)
        added, skipped, errors = 0, 0, []
        for line_no, (nom, prenom, email) in enumerate(rows, start=1):
            try:
                seat = self._build_seat(class_id, nom, prenom, email, existing)
            except ConflictError:
                skipped += 1
                continue
            except ValidationError as e:
                errors.append(f"Ligne {line_no}: {e.message}")
                continue
            self.db.add(seat)
            # flush so the next row gets the following position
            self.db.flush()
            existing.add((match_key(seat.nom), match_key(seat.prenom)))
            added += 1
        self.db.commit()
        logger.info(
            "Imported roster for class %s: %d added, %d skipped, %d errors",
            class_id, added, skipped, len(errors),
        )
        return {"added": added, "skipped": skipped, "errors": errors}

    def resolve_seat_ref(self, class_id: str, ref: SeatRef) -> SeatModel:
        """Return the seat addressed by key or by index.

        Raises:
            NotFoundError: If no seat carries that key/index.
        """
        class_id = check_class_id(class_id)
        query = self.db.query(SeatModel).filter(SeatModel.class_id == class_id)
        if ref.seat_key:
            query = query.filter(SeatModel.seat_key == ref.seat_key)
        elif ref.position is not None and ref.position >= 0:
            query = query.filter(SeatModel.position == ref.position)
        else:
            raise ValidationError("Référence de place invalide")
        seat = query.order_by(SeatModel.id).first()
        if not seat:
            raise NotFoundError("Place introuvable")
        return seat

    def delete_seat_row(self, seat: SeatModel) -> None:
        """Delete a seat and close the gap in positions. Caller commits."""
        class_id, position = seat.class_id, seat.position
        self.db.delete(seat)
        self.db.flush()
        self.db.execute(
            update(SeatModel)
            .where(SeatModel.class_id == class_id, SeatModel.position > position)
            .values(position=SeatModel.position - 1)
            .execution_options(synchronize_session=False)
        )

    def release_user_seats(self, class_id: str, user_id: str) -> int:
        """Free every seat of the class bound to the user. Caller commits."""
        result = self.db.execute(
            update(SeatModel)
            .where(SeatModel.class_id == class_id, SeatModel.user_id == user_id)
            .values(free=True, user_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def seat_owned_by(self, class_id: str, nom: str, prenom: str, user_id: str) -> bool:
        """Whether a seat with these names is bound to the user (fresh read)."""
        wanted = (match_key(nom), match_key(prenom))
        rows = (
            self.db.query(SeatModel.nom, SeatModel.prenom, SeatModel.free)
            .filter(SeatModel.class_id == class_id, SeatModel.user_id == user_id)
            .all()
        )
        return any(
            row.free is False and (match_key(row.nom), match_key(row.prenom)) == wanted
            for row in rows
        )

    # --- Matching ---

    def load_joinable_class(self, class_id: str) -> ClassModel:
        """Active class whose join code is still valid.

        Raises:
            InvalidClassroomReference: If the id is malformed.
            ValidationError: Same message as an unknown code.
        """
        class_id = check_class_id(class_id)
        model = (
            self.db.query(ClassModel)
            .filter(
                ClassModel.class_id == class_id,
                ClassModel.active.is_(True),
                ClassModel.code != "",
                ClassModel.code_expires.isnot(None),
                ClassModel.code_expires > utcnow(),
            )
            .first()
        )
        if not model:
            raise ValidationError(INVALID_CODE_MESSAGE)
        return model

    def find_matching_seat(
        self, class_id: str, nom: str, prenom: str, user_id: Optional[str] = None
    ) -> SeatModel:
        """Find the first seat carrying the claimed names.

        Args:
            class_id: Class to search.
            nom: Claimed surname, any case/accents.
            prenom: Claimed given name, any case/accents.
            user_id: Set when an existing user retries; their own seat counts
                as available.

        Returns:
            The matched SeatModel.

        Raises:
            NoMatchingSeat: No seat carries these names.
            SeatUnavailable: The seat is bound to someone else.
        """
        class_model = self.load_joinable_class(class_id)
        wanted = (match_key(nom), match_key(prenom))
        seats = (
            self.db.query(SeatModel)
            .filter(SeatModel.class_id == class_model.class_id)
            .order_by(SeatModel.position, SeatModel.id)
            .all()
        )
        for seat in seats:
            if (match_key(seat.nom), match_key(seat.prenom)) != wanted:
                continue
            if not seat_available_for(seat, user_id):
                raise SeatUnavailable()
            return seat
        raise NoMatchingSeat()

    # --- Claim ---

    def claim_seat(
        self, class_id: str, nom: str, prenom: str, user_id: str, commit: bool = True
    ) -> ClaimResult:
        """Bind the matching seat to ``user_id``.

        Safe to call again for the same user: a seat already bound to them is
        reported with ``already_owned=True``.

        Args:
            class_id: Class to join.
            nom: Claimed surname.
            prenom: Claimed given name.
            user_id: Account to bind.
            commit: Commit on success. Pass False to commit together with the
                enrollment row.

        Returns:
            ClaimResult describing the seat.

        Raises:
            InvalidClassroomReference, ValidationError, NoMatchingSeat,
            SeatUnavailable, InternalInconsistency.
        """
        try:
            seat = self.find_matching_seat(class_id, nom, prenom, user_id=user_id)
            already_owned = seat.user_id == user_id
            stmt = update(SeatModel).where(SeatModel.class_id == seat.class_id)
            if seat.seat_key:
                stmt = stmt.where(SeatModel.seat_key == seat.seat_key)
            elif seat.position is not None and seat.position >= 0:
                # pin the names too: the roster may have shifted since the read
                stmt = stmt.where(
                    SeatModel.position == seat.position,
                    SeatModel.nom == seat.nom,
                    SeatModel.prenom == seat.prenom,
                )
            else:
                logger.error(
                    "Seat row %s in class %s has neither key nor index", seat.id, seat.class_id
                )
                raise InternalInconsistency("Seat without key or index")

            result = self.db.execute(
                stmt.where(_available_clause(user_id if already_owned else None))
                .values(free=False, user_id=user_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                if not self.seat_owned_by(seat.class_id, seat.nom, seat.prenom, user_id):
                    logger.info(
                        "Seat claim lost in class %s for user %s", seat.class_id, user_id
                    )
                    raise SeatUnavailable()
                already_owned = True

            claim = ClaimResult(
                class_id=seat.class_id,
                seat_key=seat.seat_key,
                position=seat.position,
                already_owned=already_owned,
            )
            # the identity map still holds the pre-update row
            self.db.expire(seat)
            if commit:
                self.db.commit()
        except Exception:
            if commit:
                self.db.rollback()
            raise

        logger.info(
            "User %s holds seat %s/%s in class %s (already_owned=%s)",
            user_id, claim.seat_key, claim.position, claim.class_id, claim.already_owned,
        )
        return claim

    # --- Internal ---

    def _require_class(self, class_id: str) -> str:
        class_id = check_class_id(class_id)
        exists = (
            self.db.query(ClassModel.class_id)
            .filter(ClassModel.class_id == class_id)
            .first()
        )
        if not exists:
            raise NotFoundError("Classe introuvable")
        return class_id

    def _existing_keys(self, class_id: str) -> set:
        rows = (
            self.db.query(SeatModel.nom, SeatModel.prenom)
            .filter(SeatModel.class_id == class_id)
            .all()
        )
        return {(match_key(row.nom), match_key(row.prenom)) for row in rows}

    def _build_seat(
        self, class_id: str, nom: str, prenom: str, email: str, existing: set
    ) -> SeatModel:
        nom_n, prenom_n = normalize_nom(nom), normalize_prenom(prenom)
        if not nom_n or not prenom_n:
            raise ValidationError("Nom et prénom obligatoires")
        if (match_key(nom_n), match_key(prenom_n)) in existing:
            raise ConflictError(f"{nom_n} {prenom_n} est déjà dans la liste")
        next_position = (
            self.db.query(func.coalesce(func.max(SeatModel.position), -1))
            .filter(SeatModel.class_id == class_id)
            .scalar()
        ) + 1
        return SeatModel(
            class_id=class_id,
            position=next_position,
            seat_key=uuid.uuid4().hex,
            nom=nom_n,
            prenom=prenom_n,
            email=normalize_email(email),
            free=True,
            user_id=None,
        )
