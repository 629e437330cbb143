from fastapi import APIRouter, Depends
from typing import List, Optional
from ..schemas.messages import MessageIn, MessageOut, ThreadOut, MarkReadOut, UnreadCountOut
from ..crud import list_conversation, list_inquiries_for_listing, populate_messages, count_unread
from ..dispatcher import dispatcher
from ..threads import get_threads
from ..auth import get_current_user

router = APIRouter()


@router.get('/threads', response_model=List[ThreadOut])
async def threads(current_user: dict = Depends(get_current_user)):
    return await get_threads(current_user['id'])


@router.get('/unread-count', response_model=UnreadCountOut)
async def unread_count(current_user: dict = Depends(get_current_user)):
    return {'unread': await count_unread(current_user['id'])}


@router.post('/', response_model=MessageOut)
async def send(payload: MessageIn, current_user: dict = Depends(get_current_user)):
    # stored first; live delivery to connected participants is best effort
    return await dispatcher.deliver(current_user['id'], payload, channel='http')


@router.put('/read/{other_user_id}', response_model=MarkReadOut)
async def mark_read(
    other_user_id: str,
    listing_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user)
):
    updated = await dispatcher.mark_read(current_user['id'], other_user_id, listing_id)
    return {'updated': updated}


@router.get('/listing/{listing_id}/inquiries', response_model=List[MessageOut])
async def inquiries(listing_id: str, current_user: dict = Depends(get_current_user)):
    messages = await list_inquiries_for_listing(listing_id, current_user['id'])
    return await populate_messages(messages)


@router.get('/{listing_id}/{other_user_id}', response_model=List[MessageOut])
async def history(listing_id: str, other_user_id: str, current_user: dict = Depends(get_current_user)):
    messages = await list_conversation(listing_id, current_user['id'], other_user_id)
    return await populate_messages(messages)
