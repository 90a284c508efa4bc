from __future__ import annotations

import hmac
import logging
from datetime import datetime

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.config import settings
from loyalty.db.enums import RedemptionStatus
from loyalty.db.models import PointsLedgerEntry, RedemptionRequest
from loyalty.db.session import SessionFactory, run_in_transaction
from loyalty.errors import ConfigurationError, LoyaltyError, PersistenceError
from loyalty.logging_setup import configure_logging
from loyalty.services.award_service import grant_points_by_admin
from loyalty.services.limit_service import get_all_limit_statuses
from loyalty.services.points_service import get_user_points_summary, list_user_points_entries
from loyalty.services.ranking_service import run_ranking_for_month
from loyalty.services.redemption_service import decide, list_redemptions

app = FastAPI(title="Loyalty Admin", version="0.1.0")
logger = logging.getLogger(__name__)


class GrantPointsPayload(BaseModel):
    actor_user_id: int
    user_id: int
    points: int
    reason: str
    note: str | None = None


class RedemptionDecisionPayload(BaseModel):
    admin_id: int
    status: RedemptionStatus
    rejection_reason: str | None = None


class RankingRunPayload(BaseModel):
    year: int = Field(ge=2000, le=9999)
    month: int = Field(ge=1, le=12)


def _token_from_request(request: Request) -> str | None:
    token = request.query_params.get("token")
    if token:
        return token
    header = request.headers.get("x-admin-token", "")
    return header or None


def _is_authorized(request: Request) -> bool:
    expected = settings.admin_panel_token
    if not expected:
        return False
    token = _token_from_request(request)
    if token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"success": False, "error": {"code": "AUTH_001", "message": "Unauthorized", "details": {}}},
    )


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _entry_view(entry: PointsLedgerEntry) -> dict:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "event_type": entry.event_type.value,
        "limit_type": entry.limit_type.value if entry.limit_type is not None else None,
        "reason": entry.reason,
        "note": entry.note,
        "created_at": _iso(entry.created_at),
    }


def _redemption_view(item: RedemptionRequest) -> dict:
    return {
        "id": item.id,
        "user_id": item.user_id,
        "reward_id": item.reward_id,
        "points_used": item.points_used,
        "status": item.status.value,
        "receiver_name": item.receiver_name,
        "rejection_reason": item.rejection_reason,
        "decided_by_user_id": item.decided_by_user_id,
        "decided_at": _iso(item.decided_at),
        "created_at": _iso(item.created_at),
    }


@app.exception_handler(LoyaltyError)
async def loyalty_error_handler(request: Request, exc: LoyaltyError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.critical("[web] configuration error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "error": {"code": exc.error_code, "message": "Internal error", "details": {}}},
        )
    if isinstance(exc, PersistenceError):
        logger.error("[web] storage error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "error": {"code": exc.error_code, "message": exc.message, "details": {}}},
        )
    logger.info("[web] %s on %s: %s", exc.error_code, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/admin/users/{user_id}/points")
async def user_points(request: Request, user_id: int, limit: int = 20, offset: int = 0) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    async with SessionFactory() as session:
        summary = await get_user_points_summary(session, user_id=user_id)
        entries = await list_user_points_entries(session, user_id=user_id, limit=limit, offset=offset)

    return JSONResponse(
        {
            "user_id": user_id,
            "balance": summary.balance,
            "total_earned": summary.total_earned,
            "total_spent": summary.total_spent,
            "operations_count": summary.operations_count,
            "entries": [_entry_view(entry) for entry in entries],
        }
    )


@app.get("/admin/users/{user_id}/limits")
async def user_limits(request: Request, user_id: int) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    async with SessionFactory() as session:
        statuses = await get_all_limit_statuses(session, user_id=user_id)

    return JSONResponse(
        {
            "user_id": user_id,
            "limits": [
                {
                    "limit_type": status.limit_type.value,
                    "window": status.window.value,
                    "period": _iso(status.period),
                    "count": status.count,
                    "max_count": status.max_count,
                    "points_per_award": status.points_per_award,
                    "can_earn_more": status.can_earn_more,
                }
                for status in statuses
            ],
        }
    )


@app.post("/admin/points/grant")
async def action_grant_points(request: Request, payload: GrantPointsPayload) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    async def _work(session: AsyncSession) -> dict:
        result = await grant_points_by_admin(
            session,
            actor_user_id=payload.actor_user_id,
            user_id=payload.user_id,
            points=payload.points,
            reason=payload.reason,
            note=payload.note,
        )
        return _entry_view(result.entry) if result.entry is not None else {}

    entry = await run_in_transaction(_work)
    logger.info("[web] points granted: user_id=%s amount=%s", payload.user_id, payload.points)
    return JSONResponse({"success": True, "entry": entry})


@app.get("/admin/redemptions")
async def redemptions(
    request: Request,
    status: RedemptionStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    async with SessionFactory() as session:
        items = await list_redemptions(session, status=status, limit=limit, offset=offset)
    return JSONResponse({"items": [_redemption_view(item) for item in items]})


@app.post("/admin/redemptions/{redemption_id}/decision")
async def action_decide_redemption(
    request: Request,
    redemption_id: int,
    payload: RedemptionDecisionPayload,
) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    async def _work(session: AsyncSession) -> dict:
        item = await decide(
            session,
            redemption_id=redemption_id,
            status=payload.status,
            admin_id=payload.admin_id,
            rejection_reason=payload.rejection_reason,
        )
        return _redemption_view(item)

    item = await run_in_transaction(_work)
    return JSONResponse({"success": True, "item": item})


@app.post("/admin/ranking/run")
async def action_run_ranking(request: Request, payload: RankingRunPayload) -> JSONResponse:
    if not _is_authorized(request):
        return _unauthorized()

    winners = await run_ranking_for_month(payload.year, payload.month)
    logger.info("[web] manual ranking run for %04d-%02d: %s winner(s)", payload.year, payload.month, len(winners))
    return JSONResponse(
        {
            "success": True,
            "winners": [
                {
                    "rank": winner.rank,
                    "user_id": winner.user_id,
                    "post_id": winner.post_id,
                    "like_count": winner.like_count,
                    "reward_id": winner.reward_id,
                    "notified": winner.notified,
                }
                for winner in winners
            ],
        }
    )


def main() -> None:
    configure_logging(settings.log_level)
    uvicorn.run("loyalty.web.main:app", host=settings.web_host, port=settings.web_port, log_level="info")


if __name__ == "__main__":
    main()
