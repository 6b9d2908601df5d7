from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from atelier.api.models import router as models_router
from atelier.api.projects import router as projects_router
from atelier.api.variants import router as variants_router
from atelier.api.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(variants_router, prefix="/variants", tags=["Variants"])
api_router.include_router(projects_router, prefix="/projects", tags=["Projects"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(models_router, prefix="/models", tags=["Models"])
