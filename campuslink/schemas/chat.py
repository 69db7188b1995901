"""Team chat Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message cannot be blank")
        return value.strip()


class ChatMessageOut(BaseModel):
    id: int
    content: str
    sender_id: Optional[int] = None
    sender_name: str
    is_bot: bool
    timestamp: datetime


class ChatHistory(BaseModel):
    messages: List[ChatMessageOut]
