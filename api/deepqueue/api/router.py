from fastapi import APIRouter

from deepqueue.api.routes import health, hookdeck, researches, webhooks

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(researches.router, prefix="/api/researches", tags=["researches"])
api_router.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
api_router.include_router(hookdeck.router, prefix="/api/hookdeck", tags=["operator"])
