"""Health check and settings endpoints."""

from fastapi import APIRouter, HTTPException

from backend import variables
from tavern_vars import config

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings():
    """Get variable settings (macro pass cap, tag spellings, overwrite policy)."""
    return config.get_config(variables.data_dir())


@router.patch("/settings")
async def update_settings(body: dict):
    """Update variable settings (partial merge) and apply them."""
    try:
        updated = config.update_config(variables.data_dir(), body)
    except (TypeError, ValueError) as e:
        raise HTTPException(422, f"Invalid settings: {e}")
    variables.reload_manager()
    return updated
