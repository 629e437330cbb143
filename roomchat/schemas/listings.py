from pydantic import BaseModel
from typing import Optional


class ListingIn(BaseModel):
    title: str
    city: Optional[str] = None
    rent: Optional[int] = None


class ListingOut(BaseModel):
    id: str
    owner_id: str
    title: str
    city: Optional[str] = None
    rent: Optional[int] = None

    class Config:
        from_attributes = True
