from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index
from . import Base


def utcnow():
    return datetime.now(timezone.utc)


class Message(Base):
    __tablename__ = 'messages'
    id = Column(Integer, primary_key=True)
    sender_id = Column(String(32), ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    receiver_id = Column(String(32), ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    listing_id = Column(String(32), ForeignKey('listings.id', ondelete='CASCADE'), index=True, nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    # set client-side so rows created within the same second still order correctly
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_messages_receiver_unread', 'receiver_id', 'read'),
    )
