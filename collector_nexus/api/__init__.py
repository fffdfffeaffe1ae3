"""
API module for FastAPI routes.
"""
from fastapi import APIRouter

from collector_nexus.api.routes import cards, health, records, sets, sources, sync

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(cards.router)
api_router.include_router(sets.router)
api_router.include_router(sync.router)
api_router.include_router(sources.router)
api_router.include_router(records.router)
