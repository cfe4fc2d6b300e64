"""FastAPI API endpoints under /api.

Endpoint groups: scopes (init, state, process, resolve, variables,
snapshots) and settings (health, config). Every scope's resources are
nested under /api/scopes/{scope_id}/, where scope_id is "global" or a
character id.
"""

from fastapi import APIRouter

from .scopes import router as scopes_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(scopes_router)
