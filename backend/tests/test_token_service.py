from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.security import utcnow, verify_refresh_token
from app.models.security import OneTimeToken, RefreshToken
from app.services.one_time_token_service import one_time_token_service
from app.services.token_service import Provenance, token_service

from conftest import create_user


def _store(db, user, jti, expires_in=timedelta(days=1)):
    token_service.create(db, jti=jti, user_id=user.id, expires_at=utcnow() + expires_in)
    db.commit()


def test_find_active_returns_fresh_record(db):
    user = create_user(db)
    _store(db, user, "jti-1")
    record = token_service.find_active(db, "jti-1")
    assert record is not None
    assert record.user_id == user.id


def test_find_active_ignores_unknown_expired_and_revoked(db):
    user = create_user(db)
    _store(db, user, "expired", expires_in=timedelta(seconds=-1))
    _store(db, user, "revoked")
    token_service.revoke(db, "revoked")
    db.commit()

    assert token_service.find_active(db, "unknown") is None
    assert token_service.find_active(db, "expired") is None
    assert token_service.find_active(db, "revoked") is None


def test_create_never_overwrites_existing_jti(db):
    user = create_user(db)
    _store(db, user, "dup")
    with pytest.raises(IntegrityError):
        token_service.create(db, jti="dup", user_id=user.id, expires_at=utcnow() + timedelta(days=1))
    db.rollback()


def test_consume_succeeds_exactly_once(db):
    user = create_user(db)
    _store(db, user, "jti-once")
    assert token_service.consume(db, "jti-once") is True
    assert token_service.consume(db, "jti-once") is False
    db.commit()
    assert token_service.find_active(db, "jti-once") is None


def test_consume_checks_owner(db):
    user = create_user(db)
    _store(db, user, "owned")
    assert token_service.consume(db, "owned", user_id=user.id + 100) is False
    assert token_service.consume(db, "owned", user_id=user.id) is True


def test_revoke_is_idempotent(db):
    user = create_user(db)
    _store(db, user, "jti-revoke")
    token_service.revoke(db, "jti-revoke")
    token_service.revoke(db, "jti-revoke")
    token_service.revoke(db, "never-existed")
    db.commit()
    assert token_service.find_active(db, "jti-revoke") is None


def test_revoke_all_for_user_is_visible_to_subsequent_lookups(db):
    alice = create_user(db)
    bob = create_user(db, email="bob@example.com")
    for jti in ("a1", "a2", "a3"):
        _store(db, alice, jti)
    _store(db, bob, "b1")

    assert token_service.revoke_all_for_user(db, alice.id) == 3
    db.commit()

    assert all(token_service.find_active(db, jti) is None for jti in ("a1", "a2", "a3"))
    assert token_service.find_active(db, "b1") is not None


def test_cleanup_removes_only_dead_records(db):
    user = create_user(db)
    _store(db, user, "live")
    _store(db, user, "expired", expires_in=timedelta(seconds=-1))
    _store(db, user, "revoked")
    token_service.revoke(db, "revoked")
    db.commit()

    assert token_service.cleanup_expired(db) == 2
    assert [r.jti for r in db.query(RefreshToken).all()] == ["live"]


def test_issue_token_pair_persists_refresh_record(db):
    user = create_user(db)
    pair = token_service.issue_token_pair(db, user, Provenance(user_agent="pytest", ip_address="10.0.0.1"))
    db.commit()

    claims = verify_refresh_token(pair.refresh_token)
    record = token_service.find_active(db, claims.jti)
    assert record is not None
    assert record.jti == pair.refresh_jti
    assert record.user_agent == "pytest"
    assert record.ip_address == "10.0.0.1"
    assert pair.expires_in == 15 * 60


def test_rotate_revokes_old_and_links_replacement(db):
    user = create_user(db)
    first = token_service.issue_token_pair(db, user)
    db.commit()

    second = token_service.rotate(db, first.refresh_jti, user)
    db.commit()
    assert second is not None
    assert second.refresh_jti != first.refresh_jti

    old = db.query(RefreshToken).filter(RefreshToken.jti == first.refresh_jti).one()
    assert old.revoked is True
    assert old.replaced_by_jti == second.refresh_jti
    assert token_service.find_active(db, second.refresh_jti) is not None

    assert token_service.rotate(db, first.refresh_jti, user) is None


def test_one_time_token_consumed_once(db):
    user = create_user(db)
    token = one_time_token_service.issue(
        db, user_id=user.id, purpose=OneTimeToken.PASSWORD_RESET, ttl=timedelta(minutes=30)
    )
    db.commit()

    assert one_time_token_service.consume(db, token, OneTimeToken.PASSWORD_RESET) == user.id
    db.commit()
    assert one_time_token_service.consume(db, token, OneTimeToken.PASSWORD_RESET) is None


def test_one_time_token_purpose_must_match(db):
    user = create_user(db)
    token = one_time_token_service.issue(
        db, user_id=user.id, purpose=OneTimeToken.EMAIL_VERIFICATION, ttl=timedelta(hours=1)
    )
    db.commit()
    assert one_time_token_service.consume(db, token, OneTimeToken.PASSWORD_RESET) is None
    assert one_time_token_service.peek(db, token, OneTimeToken.EMAIL_VERIFICATION) is not None


def test_new_one_time_token_supersedes_previous(db):
    user = create_user(db)
    first = one_time_token_service.issue(
        db, user_id=user.id, purpose=OneTimeToken.PASSWORD_RESET, ttl=timedelta(minutes=30)
    )
    second = one_time_token_service.issue(
        db, user_id=user.id, purpose=OneTimeToken.PASSWORD_RESET, ttl=timedelta(minutes=30)
    )
    db.commit()

    assert one_time_token_service.consume(db, first, OneTimeToken.PASSWORD_RESET) is None
    assert one_time_token_service.consume(db, second, OneTimeToken.PASSWORD_RESET) == user.id


def test_expired_one_time_token_is_rejected_and_cleaned_up(db):
    user = create_user(db)
    token = one_time_token_service.issue(
        db, user_id=user.id, purpose=OneTimeToken.PASSWORD_RESET, ttl=timedelta(seconds=-1)
    )
    db.commit()

    assert one_time_token_service.consume(db, token, OneTimeToken.PASSWORD_RESET) is None
    assert one_time_token_service.cleanup_expired(db) == 1
    assert db.query(OneTimeToken).count() == 0
