from pydantic import BaseModel, EmailStr
from typing import Optional


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    name: str
    avatar_url: Optional[str] = None
    occupation: Optional[str] = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = 'bearer'


class UserOut(BaseModel):
    id: str
    email: EmailStr
    name: str
    avatar_url: Optional[str] = None
    occupation: Optional[str] = None

    class Config:
        from_attributes = True
