from __future__ import annotations

from fastapi import APIRouter, Depends

from services.identity import UserAccount
from services.telemetry import TelemetryService

from .dependencies import get_current_user, get_telemetry_service

router = APIRouter(tags=["seed"])


@router.post("/seed")
async def seed_demo_telemetry(
    _: UserAccount = Depends(get_current_user),
    service: TelemetryService = Depends(get_telemetry_service),
):
    outcome = await service.seed()
    return {"ok": True, "inserted": outcome.inserted, "source": outcome.source}
