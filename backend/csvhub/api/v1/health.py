"""
Health check endpoints for csvhub.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter

from csvhub import __version__

router = APIRouter()


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Liveness check - returns 200 whenever the app is running."""
    return {
        "alive": True,
        "version": __version__,
        "timestamp": datetime.now().isoformat()
    }
