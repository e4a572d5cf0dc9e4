"""Class administration request/response models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from config import JOIN_CODE_DEFAULT_TTL_MINUTES, JOIN_CODE_MAX_TTL_MINUTES


class CreateClassRequest(BaseModel):
    directoryname: str
    publicname: str

    @field_validator("directoryname", "publicname")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Champ obligatoire")
        return value


class ClassInfo(BaseModel):
    class_id: str
    directoryname: str
    publicname: str
    active: bool
    role_in_class: Optional[str] = None


class UpdateClassRequest(BaseModel):
    active: bool


class SeatInfo(BaseModel):
    index: int
    seatKey: Optional[str] = None
    nom: str
    prenom: str
    email: str = ""
    free: bool
    userId: Optional[str] = None


class AvailableSeat(BaseModel):
    """Seat as shown to a student during signup (no ownership details)."""

    index: int
    seatKey: Optional[str] = None
    nom: str
    prenom: str


class AddSeatRequest(BaseModel):
    nom: str
    prenom: str
    email: Optional[str] = ""

    @field_validator("nom", "prenom")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Champ obligatoire")
        return value


class ImportReport(BaseModel):
    added: int
    skipped: int
    errors: List[str] = Field(default_factory=list)


class RotateCodeRequest(BaseModel):
    expires_in_minutes: int = Field(
        default=JOIN_CODE_DEFAULT_TTL_MINUTES, ge=1, le=JOIN_CODE_MAX_TTL_MINUTES
    )


class JoinCodeInfo(BaseModel):
    code: str
    expires_at: Optional[datetime] = None
    valid: bool


class RepertoireRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Champ obligatoire")
        return value


class RepertoireInfo(BaseModel):
    name: str
    slug: str
    teacher_ids: List[str] = Field(default_factory=list)


class ClassMemberInfo(BaseModel):
    user_id: str
    nom: str
    prenom: str
    email: str
    role_in_class: str
    joined_at: datetime
