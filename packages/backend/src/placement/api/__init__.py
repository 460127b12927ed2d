"""API route aggregation.

All routers registered here get mounted in main.py under /api.

Learn: role checks live on the per-role notification routers
(require_role), not on include_router, because every role router
needs a different check. Health stays open.
"""

from fastapi import APIRouter

from placement.api.health import router as health_router
from placement.api.notifications import admin_router, role_routers

api_router = APIRouter(prefix="/api")

# Open routes, no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes: token + matching role
for _router in role_routers:
    api_router.include_router(_router, tags=["notifications"])
api_router.include_router(admin_router, tags=["notifications", "admin"])
