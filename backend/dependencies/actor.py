import logging
from typing import Optional

from database.session import get_db
from fastapi import Depends, Header, HTTPException, status
from schemas.user import Actor
from services.user_service import user_service
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def get_actor(
    x_user: Optional[str] = Header(None, description="Acting username"),
    x_user_role: Optional[str] = Header(None, description="Role when the user is not registered"),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve who is calling from the request headers.
    A registered active user keeps its stored role and sites; unknown users get
    the role from X-User-Role; no X-User at all means a read-only caller.
    """
    if not x_user or not x_user.strip():
        return Actor()

    username = x_user.strip()
    user = user_service.get_active_user(db, username)
    if user is not None:
        return Actor(
            username=user.username,
            role=user.role,
            assigned_sites=user.assigned_sites or [],
        )

    try:
        return Actor(username=username, role=x_user_role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
