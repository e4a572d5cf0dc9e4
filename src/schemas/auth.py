"""Request bodies for signup, verification, login and password flows.

Field validators reproduce the client-side rules so that the API can be
used on its own; messages are shown to end users as-is.
"""

import re
from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator, model_validator

NAME_RE = re.compile(r"^[^\W\d]+(?:[\s_-]+[^\W\d]+)*$")
CLASS_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def check_name(value: str, label: str) -> str:
    value = (value or "").strip()
    if len(value) < 2:
        raise ValueError(f"Le {label} doit contenir au moins 2 caractères")
    if not NAME_RE.match(value):
        raise ValueError("Lettres, espaces, - ou _ uniquement")
    return value


def check_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("8 caractères minimum")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Une majuscule est requise")
    if not re.search(r"[a-z]", value):
        raise ValueError("Une minuscule est requise")
    if not re.search(r"[0-9]", value):
        raise ValueError("Un chiffre est requis")
    if not re.search(r"[^A-Za-z0-9]", value):
        raise ValueError("Un caractère spécial est requis")
    return value


def check_class_id(value: str) -> str:
    value = (value or "").strip()
    if not CLASS_ID_RE.match(value):
        raise ValueError("Identifiant de classe invalide")
    return value.lower()


class EmailOnlyRequest(BaseModel):
    email: EmailStr


class NamesMixin(BaseModel):
    nom: str
    prenom: str

    @field_validator("nom")
    @classmethod
    def _nom(cls, value: str) -> str:
        return check_name(value, "nom")

    @field_validator("prenom")
    @classmethod
    def _prenom(cls, value: str) -> str:
        return check_name(value, "prénom")


class SignupRequest(NamesMixin):
    email: EmailStr
    password: str
    confirmPassword: str

    @field_validator("password")
    @classmethod
    def _password(cls, value: str) -> str:
        return check_password(value)

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirmPassword:
            raise ValueError("Les mots de passe ne correspondent pas")
        return self


class TeacherCodeRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def _code(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Le code est obligatoire")
        return value


class ClassScopedRequest(BaseModel):
    classId: str

    @field_validator("classId")
    @classmethod
    def _class_id(cls, value: str) -> str:
        return check_class_id(value)


class CheckStudentRequest(ClassScopedRequest, NamesMixin):
    email: Optional[EmailStr] = None


class SignupCreateRequest(ClassScopedRequest, SignupRequest):
    pass


class JoinExistingRequest(ClassScopedRequest, NamesMixin):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str
    # Present when the signup came through a teacher code
    classId: Optional[str] = None

    @field_validator("code")
    @classmethod
    def _code(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Le code est obligatoire")
        return value

    @field_validator("classId")
    @classmethod
    def _class_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return check_class_id(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SelectClassRequest(ClassScopedRequest):
    pass


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str
    newPassword: str

    @field_validator("newPassword")
    @classmethod
    def _password(cls, value: str) -> str:
        return check_password(value)


class ChangePasswordRequest(BaseModel):
    newPassword: str

    @field_validator("newPassword")
    @classmethod
    def _password(cls, value: str) -> str:
        return check_password(value)


class LeaveClassRequest(ClassScopedRequest):
    pass
