from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from beanie import Indexed

from .base import BaseDocument, new_id, utcnow


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserRecord(BaseModel):
    """Identity Directory entry as the core sees it"""

    id: str = Field(default_factory=new_id)
    username: str = Field(..., min_length=3, max_length=50)
    display_name: str = Field(..., min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=500)
    role: UserRole = Field(default=UserRole.USER)

    # Status
    last_seen: Optional[datetime] = Field(None)
    is_online: bool = Field(default=False)

    # Users this user has blocked
    blocked_user_ids: List[str] = Field(default_factory=list)

    password_hash: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=utcnow)

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"password_hash", "blocked_user_ids"})


class UserDocument(BaseDocument):
    """User model for MongoDB"""

    username: Indexed(str, unique=True)
    display_name: str
    avatar_url: Optional[str] = None
    role: UserRole = UserRole.USER
    last_seen: Optional[datetime] = None
    is_online: bool = False
    blocked_user_ids: List[str] = Field(default_factory=list)
    password_hash: Optional[str] = None

    class Settings:
        name = "users"
        indexes = [
            "display_name",
            "last_seen",
        ]

    def __repr__(self):
        return f"<User(username='{self.username}')>"
