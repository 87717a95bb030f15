from datetime import timedelta

from app.core.security import utcnow
from app.models.security import OneTimeToken, RefreshToken
from app.services.one_time_token_service import one_time_token_service
from app.services.token_cleanup_worker import TokenCleanupWorker
from app.services.token_service import token_service

from conftest import create_user


def test_run_once_sweeps_both_tables(session_factory):
    db = session_factory()
    try:
        user = create_user(db)
        token_service.create(db, jti="expired", user_id=user.id, expires_at=utcnow() - timedelta(minutes=1))
        token_service.create(db, jti="live", user_id=user.id, expires_at=utcnow() + timedelta(days=1))
        one_time_token_service.issue(
            db, user_id=user.id, purpose=OneTimeToken.PASSWORD_RESET, ttl=timedelta(seconds=-1)
        )
        db.commit()
    finally:
        db.close()

    worker = TokenCleanupWorker(session_factory=session_factory, interval_seconds=60)
    assert worker.run_once() == {"refresh_tokens": 1, "one_time_tokens": 1}
    assert worker.status()["removed_count"] == 2

    db = session_factory()
    try:
        assert [r.jti for r in db.query(RefreshToken).all()] == ["live"]
    finally:
        db.close()


def test_worker_starts_and_stops(session_factory):
    worker = TokenCleanupWorker(session_factory=session_factory, interval_seconds=60)
    worker.start()
    try:
        assert worker.is_running()
    finally:
        worker.stop()
    assert not worker.is_running()
