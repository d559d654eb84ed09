from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from messenger.errors import ChatError, NotFound
from messenger.models.user import UserRecord
from messenger.routing.canonical import direct_conversation, group_conversation

from .deps import from_chat_error, get_current_user, get_engine

router = APIRouter()

class DirectConversationRequest(BaseModel):
    user_id: str

class CreateGroupRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    participant_ids: List[str] = Field(..., min_length=1)

@router.get("/")
async def get_conversations(
    limit: int = Query(50, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Conversations of the current user, most recent activity first, with unread counts"""
    try:
        summaries = await engine.history.list_conversations(current_user.id, limit)
    except ChatError as e:
        raise from_chat_error(e)
    return {'conversations': [s.to_public() for s in summaries]}

@router.post("/direct")
async def open_direct_conversation(
    request: DirectConversationRequest,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Get or create the direct conversation with another user"""
    try:
        if await engine.directory.find_user(request.user_id) is None:
            raise NotFound("unknown user")
        conversation = await engine.store.ensure_conversation(
            direct_conversation(current_user.id, request.user_id)
        )
    except ChatError as e:
        raise from_chat_error(e)
    return conversation.to_public()

@router.post("/groups", status_code=status.HTTP_201_CREATED)
async def create_group(
    request: CreateGroupRequest,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Create a group with the current user as its admin"""
    try:
        for user_id in request.participant_ids:
            if await engine.directory.find_user(user_id) is None:
                raise NotFound(f"unknown user {user_id}")
        conversation = await engine.store.ensure_conversation(
            group_conversation(current_user.id, request.participant_ids, request.name)
        )
    except ChatError as e:
        raise from_chat_error(e)
    return conversation.to_public()

@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1),
    before: Optional[datetime] = Query(None),
    mark_read: bool = Query(True),
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """A page of history, oldest first. Returned messages become read for the caller."""
    limit = engine.history.clamp(limit)
    try:
        messages = await engine.history.load_history(
            conversation_id, current_user.id, limit=limit, before=before, mark_read=mark_read
        )
    except ChatError as e:
        raise from_chat_error(e)
    return {
        'conversation_id': conversation_id,
        'messages': [m.to_public() for m in messages],
        'has_more': len(messages) == limit,
    }

@router.get("/{conversation_id}/unread")
async def get_unread_count(
    conversation_id: str,
    current_user: UserRecord = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Messages in the conversation not yet read by the caller"""
    try:
        count = await engine.history.unread_count(conversation_id, current_user.id)
    except ChatError as e:
        raise from_chat_error(e)
    return {'conversation_id': conversation_id, 'unread_count': count}
