from fastapi import APIRouter, HTTPException, status, Depends, Query
from typing import Optional

from messenger.errors import ChatError
from messenger.models.user import UserRecord

from .deps import from_chat_error, get_current_user, get_engine

router = APIRouter()

@router.get("/")
async def search_users(
    search: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Find users by username or display name"""
    try:
        users = await engine.directory.search_users(search or "", limit)
    except ChatError as e:
        raise from_chat_error(e)
    return {'users': [u.to_public() for u in users if u.id != current_user.id]}

@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Public profile of one user"""
    user = await _require_user(engine, user_id)
    return {**user.to_public(), 'is_online': engine.presence.is_online(user_id)}

@router.get("/{user_id}/presence")
async def get_presence(
    user_id: str,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Live presence, falling back to the stored last_seen"""
    await _require_user(engine, user_id)
    return await engine.presence.presence_of(user_id)

@router.post("/{user_id}/block")
async def block_user(
    user_id: str,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Block a user; messages between the two are refused in both directions"""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot block yourself"
        )
    await _require_user(engine, user_id)
    try:
        await engine.directory.block(current_user.id, user_id)
    except ChatError as e:
        raise from_chat_error(e)
    return {'success': True, 'blocked_user_id': user_id}

@router.delete("/{user_id}/block")
async def unblock_user(
    user_id: str,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Lift a block"""
    try:
        await engine.directory.unblock(current_user.id, user_id)
    except ChatError as e:
        raise from_chat_error(e)
    return {'success': True, 'unblocked_user_id': user_id}

async def _require_user(engine, user_id: str) -> UserRecord:
    try:
        user = await engine.directory.find_user(user_id)
    except ChatError as e:
        raise from_chat_error(e)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user
