from fastapi import APIRouter

from .chat import router as chat_router
from .options import router as options_router
from .reservations import router as reservations_router

api_router = APIRouter()
api_router.include_router(chat_router)
api_router.include_router(options_router)
api_router.include_router(reservations_router)
