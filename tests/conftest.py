"""
Pytest configuration for backend tests.

Every test runs against a fresh SQLite file; the environment is set before
any application module is imported because ``config`` and ``core.database``
read it at import time.
"""
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pytest

_TMP_DIR = Path(tempfile.mkdtemp(prefix="classroom-roster-tests-"))
os.environ["DATA_DIR"] = str(_TMP_DIR)
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["ACCESS_TOKEN_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient  # noqa: E402

from core.database import SessionLocal, engine  # noqa: E402
from models import Base, ClassModel, SeatModel, UserModel  # noqa: E402
from utils.class_manager import ClassManager  # noqa: E402
from utils.clock import minutes_from_now, utcnow  # noqa: E402
from utils.email_sender import EmailDeliveryError, EmailSender  # noqa: E402
from utils.normalization import identity_key, normalize_nom, normalize_prenom  # noqa: E402
from utils.user_manager import hash_secret  # noqa: E402

PASSWORD = "Abcd!1234"
JOIN_CODE = "AB12CD"

_CODE_RE = re.compile(r"Votre code de vérification est : (\S+)")


class FakeEmailSender(EmailSender):
    """Records outgoing messages instead of talking to SMTP."""

    def __init__(self):
        self.sent: List[dict] = []
        self.fail = False

    def send(self, to, subject, text, html=None):
        if self.fail:
            raise EmailDeliveryError("SMTP unavailable")
        message_id = f"<msg-{len(self.sent) + 1}@test>"
        self.sent.append({"to": to, "subject": subject, "text": text, "id": message_id})
        return message_id

    def last_code(self, to: Optional[str] = None) -> str:
        messages = [m for m in self.sent if to is None or m["to"] == to]
        assert messages, "no email was sent"
        match = _CODE_RE.search(messages[-1]["text"])
        assert match, "email carries no code"
        return match.group(1)


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def mailer() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture()
def client(mailer):
    from app import create_app

    with TestClient(create_app(email_sender=mailer)) as c:
        yield c


def make_class(
    db,
    seats: Iterable[Tuple[str, str]] = (("DUPONT", "elodie"),),
    code: str = JOIN_CODE,
    expires_in_minutes: int = 10,
    active: bool = True,
    directoryname: Optional[str] = None,
) -> str:
    """Create a class with a join code and keyed seats; returns its id."""
    manager = ClassManager(db)
    name = directoryname or f"classe-{len(db.query(ClassModel).all()) + 1}"
    model = manager.create_class(name, name.upper())
    model.code = code
    model.code_expires = minutes_from_now(expires_in_minutes)
    model.active = active
    for position, (nom, prenom) in enumerate(seats):
        db.add(
            SeatModel(
                class_id=model.class_id,
                position=position,
                seat_key=f"key-{position}",
                nom=normalize_nom(nom),
                prenom=normalize_prenom(prenom),
                email="",
                free=True,
                user_id=None,
            )
        )
    db.commit()
    return model.class_id


def make_user(
    db,
    nom: str = "Dupont",
    prenom: str = "Elodie",
    email: str = "elodie.dupont@test.com",
    password: str = PASSWORD,
    verified: bool = True,
    status: str = "eleve",
) -> UserModel:
    model = UserModel(
        user_id=f"user-{email}",
        nom=normalize_nom(nom),
        prenom=normalize_prenom(prenom),
        identity_key=identity_key(nom, prenom),
        email=email,
        password_hash=hash_secret(password),
        status=status,
        active=True,
        created_at=utcnow(),
        is_verified=verified,
        confirm="",
        confirm_expires=None,
        signup_expires_at=None if verified else minutes_from_now(60),
    )
    db.add(model)
    db.commit()
    db.refresh(model)
    return model


def login(client, email: str, class_id: str, password: str = PASSWORD) -> dict:
    """Run both login steps; the client keeps the session cookie."""
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    response = client.post("/api/auth/login/select-class", json={"classId": class_id})
    assert response.status_code == 200, response.text
    return response.json()


def seat_state(db, class_id: str) -> List[Tuple[str, Optional[bool], Optional[str]]]:
    """(nom, free, user_id) per seat, read fresh from the database."""
    db.expire_all()
    rows = (
        db.query(SeatModel.nom, SeatModel.free, SeatModel.user_id)
        .filter(SeatModel.class_id == class_id)
        .order_by(SeatModel.position)
        .all()
    )
    return [(r.nom, r.free, r.user_id) for r in rows]
