from fastapi import APIRouter, Depends
from typing import List
from ..schemas.listings import ListingIn, ListingOut
from ..crud import create_listing, get_listing, list_user_listings
from ..auth import get_current_user
from ..errors import NotFoundError

router = APIRouter()


@router.post('/', response_model=ListingOut)
async def create(payload: ListingIn, current_user: dict = Depends(get_current_user)):
    return await create_listing(current_user['id'], payload)


@router.get('/mine', response_model=List[ListingOut])
async def mine(current_user: dict = Depends(get_current_user)):
    return await list_user_listings(current_user['id'])


@router.get('/{listing_id}', response_model=ListingOut)
async def detail(listing_id: str):
    listing = await get_listing(listing_id)
    if not listing:
        raise NotFoundError('listing not found')
    return listing
