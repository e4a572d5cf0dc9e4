"""HTTP tests for the signup, verification, login and account routes."""

from datetime import timedelta

from sqlalchemy import insert

from conftest import PASSWORD, login, make_class, make_user, seat_state
from api.routes.auth import NO_CLASS_MESSAGE, create_access_token
from models import SeatModel
from utils.enrollment_manager import EnrollmentManager

EMAIL = "elodie.dupont@test.com"


def _signup_body(class_id=None, **overrides):
    body = {
        "nom": "Dupont",
        "prenom": "Élodie",
        "email": EMAIL,
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
    }
    if class_id:
        body["classId"] = class_id
    body.update(overrides)
    return body


def _student_in_class(db, class_id, **user_kwargs):
    user = make_user(db, **user_kwargs)
    EnrollmentManager(db).claim_and_enroll(class_id, user.nom, user.prenom, user.user_id)
    return user


# --- Join code and roster checks ---


def test_validate_teacher_code_lists_available_seats(client, db):
    class_id = make_class(db, seats=[])
    for position, (nom, prenom, free, user_id) in enumerate(
        [
            ("DUPONT", "elodie", True, None),
            ("MARTIN", "paul", False, None),
            ("DURAND", "lea", True, "someone"),
            ("ROUX", "ana", None, None),
        ]
    ):
        db.execute(
            insert(SeatModel).values(
                class_id=class_id,
                position=position,
                seat_key=f"key-{position}",
                nom=nom,
                prenom=prenom,
                email="",
                free=free,
                user_id=user_id,
            )
        )
    db.commit()

    response = client.post("/api/auth/signup/validate-teacher-code", json={"code": "ab12cd"})
    assert response.status_code == 200
    data = response.json()
    assert data["classId"] == class_id
    assert [s["nom"] for s in data["students"]] == ["DUPONT", "ROUX"]
    assert [s["index"] for s in data["students"]] == [0, 3]


def test_validate_teacher_code_rejects_expired_code(client, db):
    make_class(db, expires_in_minutes=-5)
    response = client.post("/api/auth/signup/validate-teacher-code", json={"code": "AB12CD"})
    assert response.status_code == 400
    assert response.json() == {"error": "Code invalide ou expiré"}


def test_check_student_unknown_names_redirects(client, db):
    class_id = make_class(db)
    response = client.post(
        "/api/auth/signup/check-student",
        json={"classId": class_id, "nom": "Martin", "prenom": "Paul"},
    )
    assert response.status_code == 400
    assert response.json()["redirect"] is True


def test_check_student_taken_seat(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id, email="autre@test.com")
    response = client.post(
        "/api/auth/signup/check-student",
        json={"classId": class_id, "nom": "Dupont", "prenom": "Elodie"},
    )
    assert response.status_code == 409
    assert response.json()["redirect"] is True


def test_check_student_existing_account(client, db):
    class_id = make_class(db)
    make_user(db)
    response = client.post(
        "/api/auth/signup/check-student",
        json={"classId": class_id, "nom": "dupont", "prenom": "ELODIE"},
    )
    assert response.status_code == 409
    assert response.json() == {"error": "L'utilisateur DUPONT elodie est déjà inscrit"}


def test_check_student_ok(client, db):
    class_id = make_class(db)
    response = client.post(
        "/api/auth/signup/check-student",
        json={"classId": class_id, "nom": "Dupont", "prenom": "Elodie", "email": EMAIL},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True}


# --- Signup and verification ---


def test_signup_with_code_claims_seat_only_on_verification(client, db, mailer):
    class_id = make_class(db)
    response = client.post("/api/auth/signup/create", json=_signup_body(class_id))
    assert response.status_code == 201
    data = response.json()
    assert data["sendMail"] is True
    assert data["classId"] == class_id
    assert seat_state(db, class_id) == [("DUPONT", True, None)]

    response = client.post(
        "/api/auth/verifmail",
        json={"email": EMAIL, "code": mailer.last_code(EMAIL), "classId": class_id},
    )
    assert response.status_code == 200
    assert response.json()["classId"] == class_id
    user_id = seat_state(db, class_id)[0][2]
    assert user_id is not None
    assert seat_state(db, class_id) == [("DUPONT", False, user_id)]

    # repeating the same verification is harmless
    response = client.post(
        "/api/auth/verifmail",
        json={"email": EMAIL, "code": "ABCD", "classId": class_id},
    )
    assert response.status_code == 200


def test_signup_without_class(client, db, mailer):
    response = client.post("/api/auth/signup", json=_signup_body())
    assert response.status_code == 201
    assert response.json()["email"] == EMAIL

    response = client.post("/api/auth/verifmail", json={"email": EMAIL, "code": "0000"})
    assert response.status_code == 400
    assert response.json() == {"error": "Code incorrect."}

    code = mailer.last_code(EMAIL)
    response = client.post("/api/auth/verifmail", json={"email": EMAIL, "code": code})
    assert response.status_code == 200
    assert "classId" not in response.json()

    response = client.post("/api/auth/verifmail", json={"email": EMAIL, "code": code})
    assert response.status_code == 400


def test_signup_validation_errors(client):
    response = client.post("/api/auth/signup", json=_signup_body(password="court", confirmPassword="court"))
    assert response.status_code == 400
    errors = response.json()["errors"]
    assert {"field": "password", "message": "8 caractères minimum"} in errors


def test_signup_reports_email_failure(client, mailer):
    mailer.fail = True
    response = client.post("/api/auth/signup", json=_signup_body())
    assert response.status_code == 201
    data = response.json()
    assert data["sendMail"] is False
    assert data["notificationError"] == "SMTP unavailable"


def test_signup_duplicate_email(client, db):
    make_user(db, "Martin", "Paul", EMAIL)
    response = client.post("/api/auth/signup", json=_signup_body())
    assert response.status_code == 409


def test_resend_and_cancel(client, mailer):
    client.post("/api/auth/signup", json=_signup_body())
    response = client.post("/api/auth/resend-code", json={"email": EMAIL})
    assert response.status_code == 200
    assert len(mailer.sent) == 2

    assert client.post("/api/auth/signup/cancel", json={"email": EMAIL}).status_code == 200
    assert client.post("/api/auth/signup/cancel", json={"email": EMAIL}).status_code == 404


def test_resend_to_a_lapsed_signup(client, db, mailer):
    pending = make_user(db, verified=False)
    pending.signup_expires_at = pending.created_at - timedelta(minutes=1)
    db.commit()

    response = client.post("/api/auth/resend-code", json={"email": EMAIL})
    assert response.status_code == 400
    assert response.json() == {"error": "Aucun compte trouvé pour cet email."}
    assert mailer.sent == []


# --- Existing accounts ---


def test_join_existing_is_idempotent(client, db):
    class_id = make_class(db)
    make_user(db)
    body = {
        "classId": class_id,
        "nom": "Dupont",
        "prenom": "Elodie",
        "email": EMAIL,
        "password": PASSWORD,
    }
    first = client.post("/api/auth/signup/join-existing", json=body)
    assert first.status_code == 200
    assert first.json()["alreadyOwned"] is False

    again = client.post("/api/auth/signup/join-existing", json=body)
    assert again.status_code == 200
    assert again.json()["alreadyOwned"] is True


def test_join_existing_rejects_bad_password_and_other_names(client, db):
    class_id = make_class(db, seats=[("DUPONT", "elodie"), ("MARTIN", "paul")])
    make_user(db)
    body = {"classId": class_id, "nom": "Dupont", "prenom": "Elodie", "email": EMAIL}

    response = client.post("/api/auth/signup/join-existing", json={**body, "password": "Wrong!1234"})
    assert response.status_code == 401

    response = client.post(
        "/api/auth/signup/join-existing",
        json={**body, "nom": "Martin", "prenom": "Paul", "password": PASSWORD},
    )
    assert response.status_code == 400
    assert seat_state(db, class_id) == [("DUPONT", True, None), ("MARTIN", True, None)]


# --- Login ---


def test_login_and_select_class(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id)

    response = client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["followedClasses"] == [{"id": class_id, "name": "CLASSE-1"}]
    assert "pending_login" in client.cookies

    response = client.post("/api/auth/login/select-class", json={"classId": class_id})
    assert response.status_code == 200
    assert response.json()["role"] == "user"
    assert "jwt" in client.cookies
    assert "pending_login" not in client.cookies

    me = client.get("/api/auth/me").json()["user"]
    assert (me["email"], me["classId"]) == (EMAIL, class_id)
    assert client.get("/api/users/me").json()["role"] == "user"


def test_login_without_classes(client, db):
    make_user(db)
    response = client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["message"] == NO_CLASS_MESSAGE
    assert "pending_login" not in client.cookies


def test_login_unverified_account(client, db):
    make_user(db, verified=False)
    response = client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    assert response.status_code == 401
    assert response.json() == {"message": "Compte inexistant ou non vérifié"}


def test_select_class_requires_pending_cookie(client, db):
    class_id = make_class(db)
    response = client.post("/api/auth/login/select-class", json={"classId": class_id})
    assert response.status_code == 401
    assert response.json() == {"message": "Session de connexion expirée"}


def test_select_class_rejects_session_token(client, db):
    class_id = make_class(db)
    user = _student_in_class(db, class_id)
    client.cookies.set("pending_login", create_access_token({"userId": user.user_id}))
    response = client.post("/api/auth/login/select-class", json={"classId": class_id})
    assert response.status_code == 403


def test_class_selection_token_is_not_a_session(client, db):
    class_id = make_class(db)
    user = _student_in_class(db, class_id)
    pending = create_access_token(
        {"userId": user.user_id, "email": user.email, "purpose": "class_selection"}
    )
    client.cookies.set("jwt", pending)

    response = client.post("/api/users/leave-class", json={"classId": class_id})
    assert response.status_code == 401
    assert response.json() == {"message": "Token invalide"}
    assert client.get("/api/users/me").status_code == 401
    assert seat_state(db, class_id) == [("DUPONT", False, user.user_id)]


def test_select_class_not_enrolled(client, db):
    class_id = make_class(db)
    other_class = make_class(db, code="OTHER2")
    _student_in_class(db, class_id)
    client.post("/api/auth/login", json={"email": EMAIL, "password": PASSWORD})
    response = client.post("/api/auth/login/select-class", json={"classId": other_class})
    assert response.status_code == 403


def test_logout(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id)
    login(client, EMAIL, class_id)
    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401


# --- Account ---


def test_leave_class_frees_seat(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id)
    login(client, EMAIL, class_id)
    response = client.post("/api/users/leave-class", json={"classId": class_id})
    assert response.status_code == 200
    assert seat_state(db, class_id) == [("DUPONT", True, None)]


def test_delete_account(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id)
    login(client, EMAIL, class_id)
    response = client.post("/api/users/delete-account")
    assert response.status_code == 200
    assert seat_state(db, class_id) == [("DUPONT", True, None)]
    assert client.get("/api/auth/me").status_code == 401


def test_admin_cannot_delete_account(client, db):
    class_id = make_class(db)
    teacher = make_user(db, "Martin", "Paul", "paul@test.com", status="prof")
    EnrollmentManager(db).grant_admin(teacher.user_id, class_id)
    identity = login(client, "paul@test.com", class_id)
    assert identity["role"] == "admin"

    response = client.post("/api/users/delete-account")
    assert response.status_code == 403
    assert response.json() == {"message": "Impossible pour un professeur de se désinscrire"}


def test_change_password(client, db):
    class_id = make_class(db)
    _student_in_class(db, class_id)
    login(client, EMAIL, class_id)
    response = client.post("/api/users/change-password", json={"newPassword": "Nouveau!123"})
    assert response.status_code == 200
    login(client, EMAIL, class_id, password="Nouveau!123")


def test_forgot_and_reset_password(client, db, mailer):
    make_user(db)
    response = client.post("/api/auth/forgot", json={"email": EMAIL})
    assert response.status_code == 200
    assert response.json()["sendMail"] is True

    response = client.post(
        "/api/auth/reset-password",
        json={"email": EMAIL, "code": mailer.last_code(EMAIL), "newPassword": "Nouveau!123"},
    )
    assert response.status_code == 200

    response = client.post("/api/auth/login", json={"email": EMAIL, "password": "Nouveau!123"})
    assert response.status_code == 200

    response = client.post("/api/auth/forgot", json={"email": "ghost@test.com"})
    assert response.status_code == 400
