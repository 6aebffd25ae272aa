"""User management routes"""

import json

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from kore.api.deps import get_client_ip, get_current_admin_user, get_current_user
from kore.core.database import get_db
from kore.core.exceptions import ResourceNotFoundError
from kore.models.user import User
from kore.schemas.response import APIResponse
from kore.schemas.security import SecurityEventResponse
from kore.schemas.user import ProfileUpdate, UserResponse, UserRole
from kore.services.audit_service import audit_service
from kore.services.user_service import user_service

router = APIRouter()


@router.put("/profile", response_model=UserResponse)
def update_profile(
    changes: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Update own profile (name and/or password)

    Args:
        changes: Fields to change
        current_user: Current authenticated user
        db: Database session

    Returns:
        Updated profile
    """
    user = user_service.update_profile(db, current_user, name=changes.name, password=changes.password)
    return UserResponse.model_validate(user)


@router.get("/", response_model=List[UserResponse])
def get_all_users(
    role: Optional[UserRole] = None,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Get all users (admin only)"""
    users = user_service.get_all_users(db, role.value if role else None)
    return [UserResponse.model_validate(user) for user in users]


@router.get("/security-events", response_model=List[SecurityEventResponse])
def get_security_events(
    user_id: Optional[int] = None,
    event_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """List recent security events (admin only)"""
    events = audit_service.recent_events(db, user_id=user_id, event_type=event_type, limit=limit)
    return [
        SecurityEventResponse(
            id=ev.id,
            user_id=ev.user_id,
            event_type=ev.event_type,
            severity=ev.severity,
            family_id=ev.family_id,
            ip_address=ev.ip_address,
            metadata=json.loads(ev.detail_json) if ev.detail_json else {},
            created_at=ev.created_at,
        )
        for ev in events
    ]


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """Get a single user (admin only)"""
    user = user_service.get_user_by_id(db, user_id)
    if not user:
        raise ResourceNotFoundError("User")
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=APIResponse)
def delete_user(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    Delete a customer account (admin only)

    Admin accounts are refused with 400. Outstanding refresh tokens of the
    account stop rotating immediately.
    """
    user = user_service.get_user_by_id(db, user_id)
    if not user:
        raise ResourceNotFoundError("User")
    user_service.delete_user(
        db, user, deleted_by=current_user.id, ip_address=get_client_ip(request)
    )
    return APIResponse(message="User deleted successfully")
