from types import SimpleNamespace

import pytest
from fastapi.security import HTTPAuthorizationCredentials

from app.api import deps
from app.core.exceptions import (
    AccountDisabledError,
    AuthenticationError,
    AuthorizationError,
    TokenInvalidError,
)
from app.core.security import create_access_token
from app.schemas.user import InstructorStatus, UserRole
from app.services.user_service import user_service

from conftest import create_user


def _request():
    return SimpleNamespace(state=SimpleNamespace())


def _credentials(user):
    token = create_access_token(user.id, user.email, user.role)
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_get_current_user_attaches_principal(db):
    user = create_user(db, role="instructor")
    request = _request()

    current = deps.get_current_user(request, _credentials(user), db)

    assert current.id == user.id
    assert request.state.principal == deps.Principal(
        id=user.id, email=user.email, role="instructor", provider="local"
    )


def test_get_current_user_requires_token(db):
    with pytest.raises(AuthenticationError):
        deps.get_current_user(_request(), None, db)


def test_get_current_user_rejects_deleted_and_disabled_users(db):
    disabled = create_user(db, email="disabled@example.com", is_active=False)
    with pytest.raises(AccountDisabledError):
        deps.get_current_user(_request(), _credentials(disabled), db)

    ghost = SimpleNamespace(id=9999, email="ghost@example.com", role="student")
    with pytest.raises(AuthenticationError) as exc_info:
        deps.get_current_user(_request(), _credentials(ghost), db)
    assert exc_info.value.code.value == "UNAUTHORIZED"


def test_invalid_token_never_touches_storage():
    class ExplodingSession:
        def query(self, *args, **kwargs):
            raise AssertionError("storage should not be queried")

    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="garbage")
    with pytest.raises(TokenInvalidError):
        deps.get_current_user(_request(), credentials, ExplodingSession())


def test_admin_guard(db):
    admin = create_user(db, email="admin@example.com", role="admin")
    student = create_user(db, email="student@example.com")

    assert deps.get_current_admin_user(admin) is admin
    with pytest.raises(AuthorizationError):
        deps.get_current_admin_user(student)


def test_approved_instructor_guard(db):
    approved = create_user(db, email="approved@example.com", role="instructor", instructor_status="approved")
    pending = create_user(db, email="pending@example.com", role="instructor", instructor_status="pending")
    admin = create_user(db, email="admin@example.com", role="admin")

    assert deps.get_approved_instructor(approved) is approved
    assert deps.get_approved_instructor(admin) is admin
    with pytest.raises(AuthorizationError):
        deps.get_approved_instructor(pending)


def test_require_roles(db):
    student = create_user(db, email="student@example.com")
    guard = deps.require_roles(UserRole.INSTRUCTOR, UserRole.ADMIN)

    with pytest.raises(AuthorizationError):
        guard(student)
    assert deps.require_roles(UserRole.STUDENT)(student) is student


def test_optional_user_never_raises(db):
    user = create_user(db)
    assert deps.get_optional_current_user(_request(), None, db) is None
    garbage = HTTPAuthorizationCredentials(scheme="Bearer", credentials="garbage")
    assert deps.get_optional_current_user(_request(), garbage, db) is None
    assert deps.get_optional_current_user(_request(), _credentials(user), db).id == user.id


def test_promoted_instructor_passes_guard_only_after_approval(db):
    user = create_user(db)

    promoted = user_service.set_role(db, user.id, UserRole.INSTRUCTOR)
    with pytest.raises(AuthorizationError):
        deps.get_approved_instructor(promoted)

    approved = user_service.set_instructor_status(db, user.id, InstructorStatus.APPROVED)
    assert deps.get_approved_instructor(approved) is approved
