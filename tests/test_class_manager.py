"""Join-code resolution, code rotation and class administration."""

from datetime import timedelta

import pytest

from conftest import JOIN_CODE, make_class, make_user
from core.exceptions import ConflictError, InvalidClassroomReference, NotFoundError, ValidationError
from utils.class_manager import (
    INVALID_CODE_MESSAGE,
    ClassManager,
    check_class_id,
    code_candidates,
)
from utils.clock import utcnow


def test_code_candidates_are_deduplicated():
    assert code_candidates(" ab12cd ") == ["ab12cd", "AB12CD"]
    assert code_candidates("AB12") == ["AB12", "ab12"]
    assert code_candidates("1234") == ["1234"]
    assert code_candidates("") == []


def test_check_class_id():
    assert check_class_id(" " + "A" * 24 + " ") == "a" * 24
    with pytest.raises(InvalidClassroomReference):
        check_class_id("not-a-class")


@pytest.mark.parametrize("typed", [JOIN_CODE, JOIN_CODE.lower(), f"  {JOIN_CODE}  "])
def test_resolve_join_code_any_case(db, typed):
    class_id = make_class(db)
    assert ClassManager(db).resolve_join_code(typed).class_id == class_id


def test_resolve_join_code_matches_lowercase_stored_code(db):
    class_id = make_class(db, code="ab12cd")
    assert ClassManager(db).resolve_join_code("AB12CD").class_id == class_id


def test_unknown_expired_and_inactive_codes_fail_the_same_way(db):
    make_class(db, code="EXPIRE", expires_in_minutes=-1)
    make_class(db, code="INACTV", active=False)
    manager = ClassManager(db)
    messages = []
    for code in ("NOPE00", "EXPIRE", "INACTV", ""):
        with pytest.raises(ValidationError) as exc:
            manager.resolve_join_code(code)
        messages.append(exc.value.message)
    assert set(messages) == {INVALID_CODE_MESSAGE}


def test_code_expiring_now_is_rejected(db):
    class_id = make_class(db)
    manager = ClassManager(db)
    model = manager.get_class(class_id)
    model.code_expires = utcnow() - timedelta(seconds=1)
    db.commit()
    with pytest.raises(ValidationError):
        manager.resolve_join_code(JOIN_CODE)


def test_rotate_replaces_code_immediately(db):
    class_id = make_class(db)
    manager = ClassManager(db)
    model = manager.rotate_join_code(class_id, 30)
    assert model.code != JOIN_CODE
    assert len(model.code) == 6
    assert model.code_expires > utcnow() + timedelta(minutes=29)
    with pytest.raises(ValidationError):
        manager.resolve_join_code(JOIN_CODE)
    assert manager.resolve_join_code(model.code).class_id == class_id


def test_clear_join_code(db):
    class_id = make_class(db)
    manager = ClassManager(db)
    manager.clear_join_code(class_id)
    with pytest.raises(ValidationError):
        manager.resolve_join_code(JOIN_CODE)


def test_create_class_rejects_duplicate_directory(db):
    manager = ClassManager(db)
    manager.create_class("2nde-A", "Seconde A")
    with pytest.raises(ConflictError):
        manager.create_class(" 2nde-a ", "Autre")


def test_get_active_class_hides_inactive(db):
    class_id = make_class(db, active=False)
    with pytest.raises(NotFoundError):
        ClassManager(db).get_active_class(class_id)


def test_repertoires_and_teacher_assignment(db):
    class_id = make_class(db)
    teacher = make_user(db, "Martin", "Paul", "paul@test.com")
    manager = ClassManager(db)
    repertoire = manager.add_repertoire(class_id, "Géométrie")
    assert repertoire.slug == "geometrie"
    with pytest.raises(ConflictError):
        manager.add_repertoire(class_id, "geometrie")

    manager.assign_repertoire_teacher(class_id, "Géométrie", teacher.user_id)
    # assigning twice is harmless
    manager.assign_repertoire_teacher(class_id, "geometrie", teacher.user_id)
    assert manager.admin_repertoire_slugs(teacher.user_id) == ["geometrie"]
    assert manager.admin_repertoire_slugs(teacher.user_id, "f" * 24) == []

    assert manager.unassign_repertoire_teacher(class_id, "geometrie", teacher.user_id)
    assert manager.admin_repertoire_slugs(teacher.user_id) == []


def test_visibility_exceptions(db):
    class_id = make_class(db)
    user = make_user(db)
    manager = ClassManager(db)
    manager.add_visibility_exception(class_id, user.user_id)
    manager.add_visibility_exception(class_id, user.user_id)
    assert manager.list_visibility_exceptions(class_id) == [user.user_id]
    assert manager.remove_visibility_exception(class_id, user.user_id)
    assert manager.list_visibility_exceptions(class_id) == []
    with pytest.raises(NotFoundError):
        manager.add_visibility_exception(class_id, "ghost")
