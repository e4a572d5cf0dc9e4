"""User and enrollment schema definitions."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Enrollment(BaseModel):
    """Canonical membership of a user in a class."""

    class_id: str
    role: Literal["user", "admin"] = "user"


class User(BaseModel):
    user_id: str
    nom: str
    prenom: str
    email: str
    status: str = "eleve"
    active: bool = True
    is_verified: bool = False
    signup_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    enrollments: List[Enrollment] = Field(default_factory=list)


class ClassSummary(BaseModel):
    id: str
    name: str

