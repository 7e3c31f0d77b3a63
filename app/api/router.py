from fastapi import APIRouter
from app.api.admin import router as admin_router
from app.api.cart import router as cart_router
from app.api.chat import router as chat_router
from app.api.sessions import router as sessions_router
from app.api.shopify import router as shopify_router

router = APIRouter()
router.include_router(chat_router)
router.include_router(sessions_router)
router.include_router(cart_router)
router.include_router(shopify_router)
router.include_router(admin_router)
