"""Admin routes - account management, sessions and audit trail"""

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_admin_user
from app.core.database import get_db
from app.core.exceptions import ResourceNotFoundError, ValidationError
from app.models.user import User
from app.schemas.audit import AuditEventResponse
from app.schemas.response import APIResponse
from app.schemas.user import InstructorStatusUpdate, MessagePayload, RoleUpdate, UserResponse, UserRole
from app.services.audit_service import audit_service
from app.services.auth_service import auth_service
from app.services.token_cleanup_worker import token_cleanup_worker
from app.services.token_service import token_service
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users", response_model=APIResponse[List[UserResponse]])
def list_users(
    role: Optional[UserRole] = None,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    List all users, optionally filtered by role

    Args:
        role: Optional role filter
        current_user: Current admin user
        db: Database session
    """
    users = user_service.get_all_users(db, role.value if role else None)
    return APIResponse(data=[UserResponse.model_validate(user) for user in users])


@router.delete("/users/{user_id}", response_model=APIResponse[MessagePayload])
def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    Delete a user after revoking all of their tokens (admin only)

    Admins cannot delete their own account here.
    """
    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account")

    auth_service.delete_account(db, user_id, actor_id=current_user.id)
    return APIResponse(data=MessagePayload(message="User deleted"))


@router.post("/users/{user_id}/revoke-sessions", response_model=APIResponse[dict])
def revoke_user_sessions(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Force a user to log in again on every device."""
    user = user_service.get_user_by_id(db, user_id)
    if not user:
        raise ResourceNotFoundError("User")

    revoked = token_service.revoke_all_for_user(db, user.id)
    audit_service.log_event(
        db,
        user_id=current_user.id,
        action="revoke_sessions",
        target_type="user",
        target_id=str(user.id),
        ip_address=request.client.host if request.client else None,
        metadata={"revoked_sessions": revoked},
    )
    db.commit()
    logger.info(f"Admin id={current_user.id} revoked {revoked} sessions of user id={user.id}")
    return APIResponse(data={"revokedSessions": revoked})


@router.put("/users/{user_id}/role", response_model=APIResponse[UserResponse])
def update_user_role(
    user_id: int,
    body: RoleUpdate,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    Change a user's role (admin only)

    Promoting to instructor leaves the account pending until approved.
    Admins cannot change their own role.
    """
    if user_id == current_user.id:
        raise ValidationError("You cannot change your own role")

    audit_service.log_event(
        db,
        user_id=current_user.id,
        action="role_change",
        target_type="user",
        target_id=str(user_id),
        ip_address=request.client.host if request.client else None,
        metadata={"role": body.role.value},
    )
    user = user_service.set_role(db, user_id, body.role)
    return APIResponse(data=UserResponse.model_validate(user))


@router.put("/users/{user_id}/instructor-status", response_model=APIResponse[UserResponse])
def update_instructor_status(
    user_id: int,
    body: InstructorStatusUpdate,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Approve or reject an instructor application"""
    audit_service.log_event(
        db,
        user_id=current_user.id,
        action="instructor_status",
        target_type="user",
        target_id=str(user_id),
        ip_address=request.client.host if request.client else None,
        metadata={"status": body.status.value},
    )
    user = user_service.set_instructor_status(db, user_id, body.status)
    return APIResponse(data=UserResponse.model_validate(user))


@router.get("/audit-events", response_model=APIResponse[List[AuditEventResponse]])
def get_audit_events(
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """List recent audit trail entries."""
    events = audit_service.list_events(db, action=action, user_id=user_id, limit=limit)
    rows = []
    for ev in events:
        metadata = {}
        if ev.metadata_json:
            try:
                metadata = json.loads(ev.metadata_json)
            except json.JSONDecodeError:
                metadata = {"raw": ev.metadata_json}
        rows.append(
            AuditEventResponse(
                id=ev.id,
                user_id=ev.user_id,
                email=ev.user.email if ev.user else None,
                action=ev.action,
                target_type=ev.target_type,
                target_id=ev.target_id,
                ip_address=ev.ip_address,
                metadata=metadata,
                created_at=ev.created_at,
            )
        )
    return APIResponse(data=rows)


@router.post("/tokens/cleanup", status_code=status.HTTP_200_OK, response_model=APIResponse[dict])
def cleanup_tokens(
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """Run the revoked/expired token sweep immediately"""
    removed = token_cleanup_worker.sweep(db)
    logger.info(f"Admin id={current_user.id} ran token cleanup: {removed}")
    return APIResponse(
        data={
            "refreshTokens": removed["refresh_tokens"],
            "oneTimeTokens": removed["one_time_tokens"],
        }
    )
