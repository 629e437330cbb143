import uuid
from sqlalchemy import Column, String, DateTime, func
from . import Base


def new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = 'users'
    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String(150), nullable=False)
    avatar_url = Column(String, nullable=True)
    occupation = Column(String(150), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
