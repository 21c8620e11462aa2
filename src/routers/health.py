"""
Health check router with database connectivity verification.
"""
import asyncpg
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_pool

router = APIRouter(tags=["Health"])

SERVICE_NAME = "coya-call-pipeline"


@router.get("/health")
async def health_check(pool: asyncpg.Pool = Depends(get_pool)):
    """Returns 200 when the database answers, 503 otherwise."""
    try:
        await pool.fetchval("SELECT 1")
        return {"status": "healthy", "service": SERVICE_NAME, "database": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME, "database": str(e)}
        )
