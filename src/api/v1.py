"""Centralized v1 API router: all module routers are included here."""

from fastapi import APIRouter

from src.modules.conversations.router import router as conversations_router
from src.modules.interventions.router import router as interventions_router
from src.modules.notifications.router import router as notifications_router
from src.modules.quotes.router import router as quotes_router
from src.schemas.responses import ERROR_RESPONSES

v1_router = APIRouter(prefix="/api/v1", responses=ERROR_RESPONSES)
v1_router.include_router(interventions_router)
v1_router.include_router(quotes_router)
v1_router.include_router(conversations_router)
v1_router.include_router(notifications_router)
