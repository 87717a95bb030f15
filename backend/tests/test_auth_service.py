import pytest

from app.core.exceptions import (
    AccountDisabledError,
    EmailAlreadyExistsError,
    ErrorCode,
    InternalServiceError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidResetTokenError,
    InvalidVerificationTokenError,
    OAuthError,
    RefreshTokenInvalidError,
    ValidationError,
    WeakPasswordError,
)
from app.core.security import verify_access_token, verify_password
from app.models.audit import AuditEvent
from app.models.security import RefreshToken
from app.models.user import User
from app.services import auth_service as auth_module
from app.services.auth_service import (
    FORGOT_PASSWORD_MESSAGE,
    ExternalCredential,
    LocalCredential,
    auth_service,
)
from app.services.token_service import token_service

from conftest import STRONG_PASSWORD, create_user


@pytest.fixture
def outbox(monkeypatch):
    """Capture verification and reset tokens instead of sending email."""
    sent = {"verification": [], "reset": []}

    def fake_verification(to_email, name, token):
        sent["verification"].append((to_email, token))
        return True

    def fake_reset(to_email, name, token):
        sent["reset"].append((to_email, token))
        return True

    monkeypatch.setattr(auth_module.email_service, "send_verification_email", fake_verification)
    monkeypatch.setattr(auth_module.email_service, "send_password_reset_email", fake_reset)
    return sent


def test_register_creates_student_and_tokens(db, outbox):
    session = auth_service.register(
        db, email=" Alice@Example.com ", password=STRONG_PASSWORD, full_name="Alice"
    )

    assert session.user.email == "alice@example.com"
    assert session.user.role == "student"
    assert session.user.email_verified is False
    assert session.warnings == []
    assert verify_access_token(session.tokens.access_token).user_id == session.user.id
    assert token_service.find_active(db, session.tokens.refresh_jti) is not None
    assert outbox["verification"][0][0] == "alice@example.com"


def test_register_rejects_duplicate_email_case_insensitively(db, outbox):
    auth_service.register(db, email="alice@example.com", password=STRONG_PASSWORD)
    with pytest.raises(EmailAlreadyExistsError) as exc_info:
        auth_service.register(db, email="ALICE@example.com", password=STRONG_PASSWORD)
    assert exc_info.value.status_code == 409


def test_register_duplicate_caught_by_unique_constraint(db, outbox, monkeypatch):
    create_user(db, email="alice@example.com")
    # simulate a concurrent registration that slipped past the lookup
    monkeypatch.setattr(auth_module.user_service, "get_user_by_email", lambda db, email: None)

    with pytest.raises(EmailAlreadyExistsError) as exc_info:
        auth_service.register(db, email="alice@example.com", password=STRONG_PASSWORD)
    assert exc_info.value.code == ErrorCode.EMAIL_ALREADY_EXISTS
    assert db.query(User).count() == 1


def test_register_reports_every_password_violation(db, outbox):
    with pytest.raises(WeakPasswordError) as exc_info:
        auth_service.register(db, email="alice@example.com", password="abc")
    assert len(exc_info.value.details["requirements"]) == 3
    assert db.query(User).count() == 0


def test_register_rejects_implausible_email(db, outbox):
    with pytest.raises(InvalidEmailError):
        auth_service.register(db, email="test@mailinator.com", password=STRONG_PASSWORD)


def test_register_survives_email_dispatch_failure(db, monkeypatch):
    monkeypatch.setattr(auth_module.email_service, "send_verification_email", lambda *a: False)

    session = auth_service.register(db, email="alice@example.com", password=STRONG_PASSWORD)

    assert session.warnings
    assert db.query(User).filter(User.email == "alice@example.com").count() == 1
    assert token_service.find_active(db, session.tokens.refresh_jti) is not None


def test_login_failures_are_indistinguishable(db):
    create_user(db, email="alice@example.com")
    create_user(db, email="oauth@example.com", password=None, provider="google", provider_id="g-1")

    errors = []
    for email, password in [
        ("nobody@example.com", STRONG_PASSWORD),
        ("alice@example.com", "Wrong1!pass"),
        ("oauth@example.com", STRONG_PASSWORD),
    ]:
        with pytest.raises(InvalidCredentialsError) as exc_info:
            auth_service.login(db, email=email, password=password)
        errors.append((exc_info.value.status_code, exc_info.value.code, exc_info.value.message))

    assert len(set(errors)) == 1
    assert errors[0][1] == ErrorCode.INVALID_CREDENTIALS


def test_login_success_updates_last_login(db):
    user = create_user(db, email="alice@example.com")
    assert user.last_login is None

    session = auth_service.login(db, email="ALICE@example.com", password=STRONG_PASSWORD)

    assert session.user.id == user.id
    assert session.user.last_login is not None
    assert db.query(AuditEvent).filter(AuditEvent.action == "login").count() == 1


def test_disabled_account_rejected_only_with_correct_password(db):
    create_user(db, email="alice@example.com", is_active=False)

    with pytest.raises(InvalidCredentialsError):
        auth_service.login(db, email="alice@example.com", password="Wrong1!pass")
    with pytest.raises(AccountDisabledError):
        auth_service.login(db, email="alice@example.com", password=STRONG_PASSWORD)


def test_authenticate_dispatches_on_credential_kind(db):
    user = create_user(db, email="alice@example.com")
    assert auth_service.authenticate(db, LocalCredential("alice@example.com", STRONG_PASSWORD)).id == user.id

    external = auth_service.authenticate(
        db, ExternalCredential(provider="google", subject_id="g-42", email="new@example.com", full_name="New")
    )
    assert external.provider == "google"
    assert external.password_hash is None


def test_refresh_rotates_and_rejects_reuse(db):
    user = create_user(db)
    first = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)

    second = auth_service.refresh(db, first.tokens.refresh_token)
    assert second.tokens.refresh_jti != first.tokens.refresh_jti
    assert second.tokens.access_token != first.tokens.access_token

    with pytest.raises(RefreshTokenInvalidError):
        auth_service.refresh(db, first.tokens.refresh_token)

    # the rotated token keeps working
    assert auth_service.refresh(db, second.tokens.refresh_token).user.id == user.id


def test_refresh_rejects_missing_and_malformed_tokens(db):
    with pytest.raises(RefreshTokenInvalidError):
        auth_service.refresh(db, None)
    with pytest.raises(RefreshTokenInvalidError):
        auth_service.refresh(db, "garbage")


def test_refresh_fails_when_user_was_deleted(db):
    user = create_user(db)
    session = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)
    db.query(RefreshToken).delete()
    db.query(User).delete()
    db.commit()

    with pytest.raises(RefreshTokenInvalidError):
        auth_service.refresh(db, session.tokens.refresh_token)


def test_refresh_fails_for_disabled_user_and_burns_token(db):
    user = create_user(db)
    session = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)
    user.is_active = False
    db.commit()

    with pytest.raises(AccountDisabledError):
        auth_service.refresh(db, session.tokens.refresh_token)
    assert token_service.find_active(db, session.tokens.refresh_jti) is None
    assert db.query(RefreshToken).count() == 1


def test_logout_revokes_and_never_raises(db):
    user = create_user(db)
    session = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)

    auth_service.logout(db, session.tokens.refresh_token)
    assert token_service.find_active(db, session.tokens.refresh_jti) is None

    auth_service.logout(db, session.tokens.refresh_token)
    auth_service.logout(db, "garbage")
    auth_service.logout(db, None)


def test_change_password_revokes_every_session(db):
    user = create_user(db)
    laptop = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)
    phone = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)

    fresh = auth_service.change_password(
        db, user, current_password=STRONG_PASSWORD, new_password="Another2@"
    )

    for old in (laptop, phone):
        with pytest.raises(RefreshTokenInvalidError):
            auth_service.refresh(db, old.tokens.refresh_token)
    assert auth_service.refresh(db, fresh.tokens.refresh_token).user.id == user.id
    assert auth_service.login(db, email=user.email, password="Another2@").user.id == user.id


def test_change_password_requires_current_password(db):
    user = create_user(db)
    with pytest.raises(ValidationError) as exc_info:
        auth_service.change_password(db, user, current_password="Wrong1!pass", new_password="Another2@")
    assert exc_info.value.code == ErrorCode.INVALID_CREDENTIALS


def test_change_password_validates_new_password(db):
    user = create_user(db)
    with pytest.raises(WeakPasswordError):
        auth_service.change_password(db, user, current_password=STRONG_PASSWORD, new_password="weak")


def test_forgot_password_message_is_identical(db, outbox):
    create_user(db, email="alice@example.com")

    assert auth_service.forgot_password(db, "alice@example.com") == FORGOT_PASSWORD_MESSAGE
    assert auth_service.forgot_password(db, "nobody@example.com") == FORGOT_PASSWORD_MESSAGE
    assert [to for to, _ in outbox["reset"]] == ["alice@example.com"]


def test_reset_password_is_single_use_and_revokes_sessions(db, outbox):
    user = create_user(db)
    session = auth_service.login(db, email=user.email, password=STRONG_PASSWORD)
    auth_service.forgot_password(db, user.email)
    token = outbox["reset"][0][1]

    auth_service.reset_password(db, token=token, new_password="Another2@")

    db.refresh(user)
    assert verify_password("Another2@", user.password_hash)
    with pytest.raises(RefreshTokenInvalidError):
        auth_service.refresh(db, session.tokens.refresh_token)
    with pytest.raises(InvalidResetTokenError):
        auth_service.reset_password(db, token=token, new_password="Third3#pass")


def test_reset_password_validates_before_consuming(db, outbox):
    user = create_user(db)
    auth_service.forgot_password(db, user.email)
    token = outbox["reset"][0][1]

    with pytest.raises(WeakPasswordError):
        auth_service.reset_password(db, token=token, new_password="weak")
    auth_service.reset_password(db, token=token, new_password="Another2@")


def test_reset_password_rejects_unknown_token(db):
    with pytest.raises(InvalidResetTokenError):
        auth_service.reset_password(db, token="nope", new_password="Another2@")


def test_verify_email_consumes_token(db, outbox):
    session = auth_service.register(db, email="alice@example.com", password=STRONG_PASSWORD)
    token = outbox["verification"][0][1]

    user = auth_service.verify_email(db, token)

    assert user.id == session.user.id
    assert user.email_verified is True
    with pytest.raises(InvalidVerificationTokenError):
        auth_service.verify_email(db, token)


def test_resend_verification_supersedes_old_link(db, outbox):
    session = auth_service.register(db, email="alice@example.com", password=STRONG_PASSWORD)
    old_token = outbox["verification"][0][1]

    assert auth_service.resend_verification(db, session.user) is True
    new_token = outbox["verification"][1][1]

    with pytest.raises(InvalidVerificationTokenError):
        auth_service.verify_email(db, old_token)
    verified = auth_service.verify_email(db, new_token)
    assert auth_service.resend_verification(db, verified) is False


def test_login_with_provider_creates_links_and_reuses(db):
    existing = create_user(db, email="alice@example.com")

    linked = auth_service.login_with_provider(
        db, ExternalCredential(provider="google", subject_id="g-1", email="Alice@example.com")
    )
    assert linked.user.id == existing.id
    assert linked.user.provider_id == "g-1"
    assert linked.user.email_verified is True

    again = auth_service.login_with_provider(
        db, ExternalCredential(provider="google", subject_id="g-1", email="alice@example.com")
    )
    assert again.user.id == existing.id

    created = auth_service.login_with_provider(
        db, ExternalCredential(provider="google", subject_id="g-2", email="bob@example.com", full_name="Bob")
    )
    assert created.user.id != existing.id
    assert created.user.role == "student"
    assert created.user.full_name == "Bob"



def test_login_with_provider_refuses_to_relink_other_google_account(db):
    existing = create_user(db, email="alice@example.com", password=None, provider="google", provider_id="g-1")

    with pytest.raises(OAuthError) as exc_info:
        auth_service.login_with_provider(
            db, ExternalCredential(provider="google", subject_id="g-other", email="alice@example.com")
        )
    assert exc_info.value.code == ErrorCode.GOOGLE_AUTH_FAILED
    db.refresh(existing)
    assert existing.provider_id == "g-1"


def test_login_with_provider_recovers_from_concurrent_first_login(db, monkeypatch):
    winner = create_user(db, email="alice@example.com", password=None, provider="google", provider_id="g-1")
    real_lookup = auth_module.user_service.get_user_by_provider
    calls = []

    def lookup_after_race(db, provider, subject_id):
        calls.append(subject_id)
        return None if len(calls) == 1 else real_lookup(db, provider, subject_id)

    monkeypatch.setattr(auth_module.user_service, "get_user_by_provider", lookup_after_race)
    monkeypatch.setattr(auth_module.user_service, "get_user_by_email", lambda db, email: None)

    session = auth_service.login_with_provider(
        db, ExternalCredential(provider="google", subject_id="g-1", email="alice@example.com")
    )
    assert session.user.id == winner.id
    assert len(calls) == 2

def test_delete_account_revokes_tokens_first(db):
    admin = create_user(db, email="admin@example.com", role="admin")
    user = create_user(db, email="alice@example.com")
    auth_service.login(db, email=user.email, password=STRONG_PASSWORD)

    auth_service.delete_account(db, user.id, actor_id=admin.id)

    assert db.query(User).filter(User.email == "alice@example.com").count() == 0
    assert db.query(RefreshToken).count() == 0
    event = db.query(AuditEvent).filter(AuditEvent.action == "delete_user").one()
    assert event.user_id == admin.id


def test_unexpected_failures_become_internal_errors(db, monkeypatch):
    user = create_user(db)

    def broken(*args, **kwargs):
        raise RuntimeError("signing backend down")

    monkeypatch.setattr(auth_module.token_service, "issue_token_pair", broken)

    with pytest.raises(InternalServiceError) as exc_info:
        auth_service.login(db, email=user.email, password=STRONG_PASSWORD)
    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
    assert "signing backend down" not in exc_info.value.message
