from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
import uuid

from ..db import get_db
from ..auth.security import RequestContext, get_request_context, require_admin, require_manager
from ..models.enums import Role, UserStatus
from ..schemas.users import PasswordResetRequest, UserCreate, UserStatusUpdate, UserUpdate
from ..services import users as user_service


router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    role: Optional[Role] = None,
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    _: RequestContext = Depends(require_admin),
):
    return [user_service.serialize_user(u) for u in user_service.list_users(db, role=role, status=status_filter)]


@router.get("/electricians")
def list_electricians(db: Session = Depends(get_db), _: RequestContext = Depends(require_manager)):
    return user_service.list_electricians(db)


@router.get("/profile")
def my_profile(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_request_context)):
    return user_service.serialize_user(user_service.get_user(db, ctx.user_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_admin)):
    return user_service.serialize_user(user_service.create_user(db, ctx, payload))


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), _: RequestContext = Depends(require_manager)):
    return user_service.serialize_user(user_service.get_user(db, user_id))


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    return user_service.serialize_user(user_service.update_user(db, ctx, user_id, payload))


@router.patch("/{user_id}/status")
def set_user_status(
    user_id: uuid.UUID,
    payload: UserStatusUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    return user_service.serialize_user(user_service.set_user_status(db, ctx, user_id, payload.status))


@router.post("/{user_id}/reset-password")
def reset_password(
    user_id: uuid.UUID,
    payload: PasswordResetRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_admin),
):
    user_service.reset_password(db, ctx, user_id, payload.new_password)
    return {"ok": True}


@router.delete("/{user_id}")
def delete_user(user_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_admin)):
    user_service.delete_user(db, ctx, user_id)
    return {"ok": True, "id": str(user_id)}
