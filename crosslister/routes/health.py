from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.dependencies import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Liveness plus database connectivity and loaded adapters"""
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        database = f"error: {e}"

    adapters = getattr(request.app.state, "adapters", None)
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "service": "Crosslister",
        "database": database,
        "adapters": [p.value for p in adapters.platforms()] if adapters else [],
    }
