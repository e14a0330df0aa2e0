from cardmirror.api.health import router as health_router
from cardmirror.api.sync import router as sync_router

__all__ = [
    "health_router",
    "sync_router",
]
