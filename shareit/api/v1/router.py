from fastapi import APIRouter

from shareit.api.v1.disputes import router as disputes_router
from shareit.api.v1.notifications import router as notifications_router
from shareit.api.v1.settlements import router as settlements_router
from shareit.api.v1.violations import router as violations_router

v1_router = APIRouter()

v1_router.include_router(violations_router)
v1_router.include_router(disputes_router)
v1_router.include_router(settlements_router)
v1_router.include_router(notifications_router)
