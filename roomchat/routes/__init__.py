from fastapi import APIRouter
from .users import router as users_router
from .listings import router as listings_router
from .ws import router as ws_router
from .messages import router as messages_router

router = APIRouter()
router.include_router(users_router, prefix='/users', tags=['users'])
router.include_router(listings_router, prefix='/listings', tags=['listings'])
router.include_router(ws_router, prefix='/ws', tags=['ws'])
router.include_router(messages_router, prefix='/messages', tags=['messages'])
