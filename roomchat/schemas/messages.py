from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class MessageIn(BaseModel):
    receiver_id: str
    listing_id: str
    content: str


class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    occupation: Optional[str] = None


class ListingSummary(BaseModel):
    id: str
    title: Optional[str] = None


class MessageOut(BaseModel):
    id: int
    sender: UserSummary
    receiver: UserSummary
    listing: ListingSummary
    content: str
    read: bool
    created_at: datetime
    updated_at: datetime


class ThreadOut(BaseModel):
    other_user: UserSummary
    listing: ListingSummary
    last_message: MessageOut
    unread_count: int = 0


class MarkReadOut(BaseModel):
    updated: int


class UnreadCountOut(BaseModel):
    unread: int


class ThreadsOut(BaseModel):
    threads: List[ThreadOut]
    unread_total: int
