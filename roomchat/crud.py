import os
from typing import Iterable, List, Optional
from .models import AsyncSessionLocal
from .models.users import User
from .models.listings import Listing
from .models.messages import Message, utcnow
from .schemas.messages import MessageOut, UserSummary, ListingSummary
from .errors import ValidationError, PersistenceError, AuthorizationError, NotFoundError
from .auth import create_access_token
from passlib.context import CryptContext
from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto')

MAX_MESSAGE_LENGTH = int(os.getenv('MAX_MESSAGE_LENGTH', '2000'))


# users
async def create_user(payload):
    async with AsyncSessionLocal() as session:
        user = User(
            email=payload.email,
            hashed_password=pwd_ctx.hash(payload.password),
            name=payload.name,
            avatar_url=payload.avatar_url,
            occupation=payload.occupation,
        )
        session.add(user)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise ValidationError('email already registered')
        await session.refresh(user)
        return user


async def authenticate_user(email: str, password: str):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.email == email))
        user = q.scalars().first()
        if not user or not pwd_ctx.verify(password, user.hashed_password):
            return None
        access = create_access_token({'id': user.id})
        return {'access_token': access, 'token_type': 'bearer'}


async def get_user_by_id(user_id: str):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id == user_id))
        return q.scalars().first()


# listings
async def create_listing(owner_id: str, payload):
    async with AsyncSessionLocal() as session:
        listing = Listing(owner_id=owner_id, title=payload.title, city=payload.city, rent=payload.rent)
        session.add(listing)
        await session.commit()
        await session.refresh(listing)
        return listing


async def get_listing(listing_id: str):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(Listing).where(Listing.id == listing_id))
        return q.scalars().first()


async def list_user_listings(owner_id: str):
    async with AsyncSessionLocal() as session:
        q = await session.execute(
            select(Listing).where(Listing.owner_id == owner_id).order_by(Listing.created_at.desc())
        )
        return q.scalars().all()


# messaging
def _ordered(query, descending: bool = False):
    if descending:
        return query.order_by(Message.created_at.desc(), Message.id.desc())
    return query.order_by(Message.created_at.asc(), Message.id.asc())


def validate_message(sender_id: str, receiver_id: str, listing_id: str, content: str):
    """Reject a send before it touches storage or any rate budget"""
    if not content or not content.strip():
        raise ValidationError('message content is empty')
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f'message content exceeds {MAX_MESSAGE_LENGTH} characters')
    if not receiver_id:
        raise ValidationError('receiver_id is required')
    if not listing_id:
        raise ValidationError('listing_id is required')
    if sender_id == receiver_id:
        raise ValidationError('cannot send a message to yourself')


async def create_message(sender_id: str, receiver_id: str, listing_id: str, content: str) -> Message:
    # content is stored exactly as sent
    validate_message(sender_id, receiver_id, listing_id, content)

    async with AsyncSessionLocal() as session:
        m = Message(sender_id=sender_id, receiver_id=receiver_id, listing_id=listing_id, content=content)
        session.add(m)
        try:
            await session.commit()
            await session.refresh(m)
        except IntegrityError as e:
            await session.rollback()
            logger.info(f"Message from {sender_id} rejected, unknown receiver {receiver_id} or listing {listing_id}")
            raise ValidationError('unknown receiver or listing') from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Message persist failed for sender {sender_id}: {e}")
            raise PersistenceError('message could not be stored') from e
        return m


async def list_conversation(listing_id: str, user_a: str, user_b: str) -> List[Message]:
    q = select(Message).where(
        Message.listing_id == listing_id,
        or_(
            and_(Message.sender_id == user_a, Message.receiver_id == user_b),
            and_(Message.sender_id == user_b, Message.receiver_id == user_a),
        ),
    )
    try:
        async with AsyncSessionLocal() as session:
            res = await session.execute(_ordered(q))
            return res.scalars().all()
    except SQLAlchemyError as e:
        raise PersistenceError('conversation could not be loaded') from e


async def mark_read(viewer_id: str, other_id: str, listing_id: Optional[str] = None) -> int:
    """Flag everything `other_id` sent to `viewer_id` as read; returns the number of rows changed"""
    if viewer_id == other_id:
        raise ValidationError('cannot mark your own messages as read')
    conditions = [
        Message.receiver_id == viewer_id,
        Message.sender_id == other_id,
        Message.read.is_(False),
    ]
    if listing_id:
        conditions.append(Message.listing_id == listing_id)
    stmt = (
        update(Message)
        .where(*conditions)
        .values(read=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    try:
        async with AsyncSessionLocal() as session:
            res = await session.execute(stmt)
            await session.commit()
            return res.rowcount or 0
    except SQLAlchemyError as e:
        raise PersistenceError('read state could not be updated') from e


async def list_inquiries_for_listing(listing_id: str, owner_id: str) -> List[Message]:
    """Latest message from each sender addressed to the owner of a listing, newest first"""
    listing = await get_listing(listing_id)
    if not listing:
        raise NotFoundError('listing not found')
    if listing.owner_id != owner_id:
        raise AuthorizationError('only the listing owner can view its inquiries')

    q = select(Message).where(Message.listing_id == listing_id, Message.receiver_id == owner_id)
    try:
        async with AsyncSessionLocal() as session:
            res = await session.execute(_ordered(q, descending=True))
            messages = res.scalars().all()
    except SQLAlchemyError as e:
        raise PersistenceError('inquiries could not be loaded') from e

    latest = {}
    for m in messages:
        latest.setdefault(m.sender_id, m)
    return list(latest.values())


async def list_messages_for_user(user_id: str) -> List[Message]:
    q = select(Message).where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
    try:
        async with AsyncSessionLocal() as session:
            res = await session.execute(_ordered(q))
            return res.scalars().all()
    except SQLAlchemyError as e:
        raise PersistenceError('messages could not be loaded') from e


async def count_unread(user_id: str, other_id: Optional[str] = None, listing_id: Optional[str] = None) -> int:
    conditions = [Message.receiver_id == user_id, Message.read.is_(False)]
    if other_id:
        conditions.append(Message.sender_id == other_id)
    if listing_id:
        conditions.append(Message.listing_id == listing_id)
    try:
        async with AsyncSessionLocal() as session:
            res = await session.execute(select(func.count(Message.id)).where(*conditions))
            return res.scalar_one()
    except SQLAlchemyError as e:
        raise PersistenceError('unread count could not be loaded') from e


# directory population
async def load_directory(user_ids: Iterable[str], listing_ids: Iterable[str]):
    """Fetch user and listing summaries by id; unknown ids are simply absent"""
    user_ids, listing_ids = set(user_ids), set(listing_ids)
    users, listings = {}, {}
    async with AsyncSessionLocal() as session:
        if user_ids:
            res = await session.execute(select(User).where(User.id.in_(user_ids)))
            for u in res.scalars().all():
                users[u.id] = UserSummary(id=u.id, name=u.name, avatar_url=u.avatar_url, occupation=u.occupation)
        if listing_ids:
            res = await session.execute(select(Listing).where(Listing.id.in_(listing_ids)))
            for l in res.scalars().all():
                listings[l.id] = ListingSummary(id=l.id, title=l.title)
    return users, listings


def to_message_out(m: Message, users: dict = None, listings: dict = None) -> MessageOut:
    users = users or {}
    listings = listings or {}
    return MessageOut(
        id=m.id,
        sender=users.get(m.sender_id) or UserSummary(id=m.sender_id),
        receiver=users.get(m.receiver_id) or UserSummary(id=m.receiver_id),
        listing=listings.get(m.listing_id) or ListingSummary(id=m.listing_id),
        content=m.content,
        read=bool(m.read),
        created_at=m.created_at,
        updated_at=m.updated_at,
    )


async def populate_messages(messages: List[Message]) -> List[MessageOut]:
    user_ids = {m.sender_id for m in messages} | {m.receiver_id for m in messages}
    listing_ids = {m.listing_id for m in messages}
    try:
        users, listings = await load_directory(user_ids, listing_ids)
    except SQLAlchemyError as e:
        # the messages themselves are fine, serve them with bare ids
        logger.warning(f"Directory lookup failed, returning unpopulated messages: {e}")
        users, listings = {}, {}
    return [to_message_out(m, users, listings) for m in messages]
