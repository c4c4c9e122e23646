import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db, transaction
from errors import InvalidRequestError, NotFoundError
from auth.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

SEARCH_LIMIT = 10


@router.get("", response_model=List[schemas.User])
def list_users(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List active users, newest accounts first."""
    users = (
        db.query(models.User)
        .filter(models.User.is_active.is_(True))
        .order_by(models.User.created_at.desc(), models.User.id.desc())
        .all()
    )
    logger.debug(f"User {current_user.id} listed {len(users)} active users")
    return users


@router.get("/search", response_model=List[schemas.UserSummary])
def search_users(
    q: str = Query(..., min_length=1, max_length=255),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Find active users whose email or name contains ``q`` (case-insensitive).

    Used to look up the user id needed when adding project members.
    """
    users = (
        db.query(models.User)
        .filter(
            models.User.is_active.is_(True),
            models.User.email.icontains(q, autoescape=True) | models.User.name.icontains(q, autoescape=True),
        )
        .order_by(models.User.name.asc(), models.User.id.asc())
        .limit(SEARCH_LIMIT)
        .all()
    )
    logger.debug(f"User {current_user.id} searched users for '{q}': {len(users)} results")
    return users


@router.get("/me", response_model=schemas.User)
def get_me(current_user: models.User = Depends(get_current_user)):
    return current_user


@router.put("/me", response_model=schemas.User)
def update_me(
    user_update: schemas.UserUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the current user's profile (name, avatar)."""
    update_data = user_update.model_dump(exclude_unset=True)
    if "name" in update_data and update_data["name"] is None:
        raise InvalidRequestError("Field 'name' cannot be null")

    with transaction(db):
        for key, value in update_data.items():
            setattr(current_user, key, value)
    db.refresh(current_user)

    logger.info(f"User {current_user.id} updated profile fields: {sorted(update_data)}")
    return current_user


@router.post("/me/deactivate", response_model=schemas.User)
def deactivate_me(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Deactivate the current account.

    Users are never hard-deleted: memberships and activity history stay intact,
    but the account can no longer authenticate.
    """
    with transaction(db):
        current_user.is_active = False
    db.refresh(current_user)

    logger.info(f"User {current_user.id} deactivated their account")
    return current_user


@router.get("/{user_id}", response_model=schemas.User)
def get_user(
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a user by ID."""
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user
