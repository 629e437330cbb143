from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from . import Base
from .users import new_id


class Listing(Base):
    __tablename__ = 'listings'
    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    city = Column(String(150), nullable=True)
    rent = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
