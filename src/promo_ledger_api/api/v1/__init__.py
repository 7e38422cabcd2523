from fastapi import APIRouter

from .endpoints import (
    campaigns,
    health,
    loyalty,
    observability,
    rewards,
    visits,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(visits.router)
router.include_router(loyalty.router)
router.include_router(rewards.router)
router.include_router(campaigns.router)
router.include_router(observability.router)
