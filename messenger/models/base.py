import uuid
from datetime import datetime, timezone

from beanie import Document
from pydantic import Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class BaseDocument(Document):
    """Common fields for every collection. Ids are opaque strings, not ObjectIds."""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
