from fastapi import APIRouter

from rto_validator.core.config import settings
from rto_validator.core.database import db_client

router = APIRouter()


@router.get("", summary="Service health", operation_id="get_health")
async def health() -> dict:
    database = await db_client.health_check()
    return {
        "status": "ok" if database.get("connected") else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": database,
    }
