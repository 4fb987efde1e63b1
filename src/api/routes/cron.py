"""Scheduler entry point for the daily deadline sweep."""

import hmac

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from src.api.dependencies import get_engine
from src.config import settings
from src.domains.compliance.engine import ComplianceEngine

logger = structlog.get_logger()

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _authorized(authorization: str | None) -> bool:
    if not settings.cron_secret:
        return True
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


@router.api_route("/check-deadlines", methods=["GET", "POST"])
async def check_deadlines(
    authorization: str | None = Header(default=None),
    engine: ComplianceEngine = Depends(get_engine),  # noqa: B008
) -> JSONResponse:
    if not _authorized(authorization):
        logger.warning("cron_unauthorized")
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    result = await engine.monitor.run()
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            **result.model_dump(mode="json"),
            "total_alerts_sent": result.total_alerts_sent,
        },
    )
