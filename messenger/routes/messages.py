from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field
from typing import Optional, List

from messenger.errors import ChatError
from messenger.models.message import Attachment
from messenger.models.user import UserRecord, UserRole
from messenger.routing.conversation_router import SendMessageIntent

from .deps import from_chat_error, get_current_user, get_engine, http_error

router = APIRouter()

class SendMessageRequest(BaseModel):
    receiver_id: Optional[str] = None
    conversation_id: Optional[str] = None
    content: str = ""
    message_type: str = "text"
    attachment: Optional[Attachment] = None
    client_message_id: Optional[str] = Field(None, max_length=100)

class MarkReadRequest(BaseModel):
    message_ids: List[str] = Field(..., min_length=1)

class ReactionRequest(BaseModel):
    emoji: str

@router.post("/", status_code=status.HTTP_201_CREATED)
async def send_message(
    request: SendMessageRequest,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Send a message; the response carries the persisted message"""
    intent = SendMessageIntent(sender_id=current_user.id, **request.model_dump())
    result = await engine.router.send_message(intent)
    if not result.is_ok:
        raise http_error(result.error, result.detail)
    return {**result.to_payload(), 'duplicate': result.duplicate}

@router.post("/read")
async def mark_read(
    request: MarkReadRequest,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Explicit read receipts"""
    try:
        count = await engine.history.mark_read(current_user.id, request.message_ids)
    except ChatError as e:
        raise from_chat_error(e)
    return {'success': True, 'read': count}

@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    for_everyone: bool = Query(False),
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Delete for everyone (sender only) or hide for the caller"""
    try:
        await engine.router.delete_message(current_user.id, message_id, for_everyone)
    except ChatError as e:
        raise from_chat_error(e)
    return {'success': True, 'message_id': message_id, 'for_everyone': for_everyone}

@router.post("/{message_id}/reactions")
async def toggle_reaction(
    message_id: str,
    request: ReactionRequest,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Add, replace or remove the caller's reaction"""
    try:
        message = await engine.router.react(current_user.id, message_id, request.emoji)
    except ChatError as e:
        raise from_chat_error(e)
    return {
        'message_id': message.id,
        'reactions': [r.model_dump(mode='json') for r in message.reactions],
    }

@router.get("/flags")
async def list_flags(
    reviewed: Optional[bool] = Query(None),
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Moderation flags, admins only"""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    try:
        flags = await engine.store.list_flags(reviewed)
    except ChatError as e:
        raise from_chat_error(e)
    return {'flags': [f.model_dump(mode='json') for f in flags]}
