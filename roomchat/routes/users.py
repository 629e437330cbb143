from fastapi import APIRouter, Depends, Form
from ..schemas.users import RegisterIn, TokenOut, UserOut
from ..crud import create_user, authenticate_user, get_user_by_id
from ..auth import get_current_user
from ..errors import AuthenticationError, NotFoundError

router = APIRouter()


@router.post('/register', response_model=UserOut)
async def register(payload: RegisterIn):
    return await create_user(payload)


@router.post('/login', response_model=TokenOut)
async def login(email: str = Form(...), password: str = Form(...)):
    token = await authenticate_user(email, password)
    if not token:
        raise AuthenticationError('invalid credentials')
    return token


@router.get('/me', response_model=UserOut)
async def me(current_user: dict = Depends(get_current_user)):
    user = await get_user_by_id(current_user['id'])
    if not user:
        raise NotFoundError('user not found')
    return user
