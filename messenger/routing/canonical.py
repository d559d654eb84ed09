# messenger/routing/canonical.py
'''Conversation identifiers.

A direct conversation is named by its two participants, sorted and joined
with DIRECT_DELIMITER, so either side resolves the same id without a
lookup. Groups get an opaque generated id which never contains the
delimiter, which keeps the two id spaces apart.'''

from __future__ import annotations

import uuid
from typing import List, Optional, Tuple

from messenger.errors import ValidationFailed
from messenger.models.conversation import ConversationRecord, ConversationType

DIRECT_DELIMITER = "_"


def _check_user_id(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id:
        raise ValidationFailed("user id is required")
    if DIRECT_DELIMITER in user_id:
        raise ValidationFailed(f"user id may not contain {DIRECT_DELIMITER!r}")


def direct_conversation_id(user_a: str, user_b: str) -> str:
    _check_user_id(user_a)
    _check_user_id(user_b)
    if user_a == user_b:
        raise ValidationFailed("a direct conversation needs two distinct users")
    return DIRECT_DELIMITER.join(sorted((user_a, user_b)))


def is_direct_id(conversation_id: str) -> bool:
    return isinstance(conversation_id, str) and conversation_id.count(DIRECT_DELIMITER) == 1


def split_direct_id(conversation_id: str) -> Tuple[str, str]:
    if not is_direct_id(conversation_id):
        raise ValidationFailed(f"not a direct conversation id: {conversation_id}")
    a, b = conversation_id.split(DIRECT_DELIMITER)
    if not a or not b or a == b:
        raise ValidationFailed(f"malformed direct conversation id: {conversation_id}")
    return a, b


def canonical_conversation_id(conversation_id: str) -> str:
    """The stored form of an id: a direct pair in sorted order, anything else as given."""
    if not is_direct_id(conversation_id):
        return conversation_id
    a, b = conversation_id.split(DIRECT_DELIMITER)
    if not a or not b:
        return conversation_id
    return DIRECT_DELIMITER.join(sorted((a, b)))


def new_group_id() -> str:
    return uuid.uuid4().hex


def direct_conversation(user_a: str, user_b: str) -> ConversationRecord:
    """Unsaved record for the direct conversation between two users."""
    cid = direct_conversation_id(user_a, user_b)
    return ConversationRecord(
        id=cid,
        type=ConversationType.DIRECT,
        participant_ids=list(split_direct_id(cid)),
    )


def group_conversation(creator_id: str, participant_ids: List[str],
                       name: Optional[str] = None) -> ConversationRecord:
    members = [creator_id] + [p for p in participant_ids if p != creator_id]
    # keep first occurrence order, drop duplicates
    members = list(dict.fromkeys(members))
    for m in members:
        _check_user_id(m)
    return ConversationRecord(
        id=new_group_id(),
        type=ConversationType.GROUP,
        participant_ids=members,
        admin_ids=[creator_id],
        name=name,
    )


def implied_participants(conversation_id: str) -> Optional[List[str]]:
    """Participants readable from the id alone (direct ids only)."""
    if is_direct_id(conversation_id):
        return list(split_direct_id(conversation_id))
    return None
