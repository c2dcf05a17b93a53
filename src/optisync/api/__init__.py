"""HTTP admin surface for optisync (FastAPI)."""

from optisync.api.router import create_sync_router

__all__ = ["create_sync_router"]
