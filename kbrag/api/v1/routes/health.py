from datetime import datetime, timezone
from fastapi import APIRouter
import os

from kbrag.core.config import settings

router = APIRouter()


@router.get("/", summary="Health check")
async def health():
    return {
        "service": settings.PROJECT_NAME,
        "status": "ok",
        "ingestion_topic": settings.KAFKA_TOPIC,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "git_commit": os.getenv("GIT_COMMIT"),
    }
