"""Driver routes: claim a batch, scan boxes, work the stops."""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user, require_role
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.delivery_service.schemas import (
    AddressResponse,
    BatchDetailResponse,
    BatchSummaryResponse,
    ScanRequest,
    StopResponse,
)
from services.delivery_service.services import address_gate, dispatch
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/delivery", tags=["delivery"])

require_driver = require_role("driver")


async def _summaries(db: AsyncSession, batches) -> List[BatchSummaryResponse]:
    counts = await dispatch.count_consumer_stops(db, [b.id for b in batches])
    return [
        BatchSummaryResponse(
            id=b.id,
            delivery_date=b.delivery_date,
            zip_code=b.zip_code,
            batch_number=b.batch_number,
            status=b.status,
            is_subsidized=b.is_subsidized,
            stop_count=counts.get(b.id, 0),
        )
        for b in batches
    ]


@router.get("/batches/available", response_model=List[BatchSummaryResponse])
async def list_available_batches(
    delivery_date: Optional[date] = None,
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    """Unclaimed batches, optionally for one delivery date."""
    batches = await dispatch.list_available_batches(db, delivery_date)
    return await _summaries(db, batches)


@router.get("/batches/me", response_model=List[BatchSummaryResponse])
async def list_my_batches(
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    batches = await dispatch.list_driver_batches(db, current_user)
    return await _summaries(db, batches)


@router.post("/batches/{batch_id}/claim", response_model=BatchDetailResponse)
async def claim_batch(
    batch_id: uuid.UUID,
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    view = await dispatch.claim_batch(db, batch_id, current_user)
    return BatchDetailResponse.model_validate(view)


@router.get("/batches/{batch_id}", response_model=BatchDetailResponse)
async def get_batch(
    batch_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Batch with its stops. Addresses stay hidden until each box is scanned."""
    view = await address_gate.get_batch_view(db, batch_id, current_user)
    return BatchDetailResponse.model_validate(view)


@router.post("/batches/{batch_id}/scan", response_model=StopResponse)
async def scan_box(
    batch_id: uuid.UUID,
    scan_in: ScanRequest,
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    view = await address_gate.record_pickup_scan(
        db, batch_id, scan_in.box_code, current_user
    )
    return StopResponse.model_validate(view)


@router.post("/batches/{batch_id}/stops/{stop_id}/start", response_model=StopResponse)
async def start_stop(
    batch_id: uuid.UUID,
    stop_id: uuid.UUID,
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    view = await dispatch.start_stop(db, batch_id, stop_id, current_user)
    return StopResponse.model_validate(view)


@router.post("/batches/{batch_id}/stops/{stop_id}/deliver", response_model=StopResponse)
async def deliver_stop(
    batch_id: uuid.UUID,
    stop_id: uuid.UUID,
    current_user: AuthUser = Depends(require_driver),
    db: AsyncSession = Depends(get_async_db),
):
    view = await dispatch.deliver_stop(db, batch_id, stop_id, current_user)
    return StopResponse.model_validate(view)


@router.get("/orders/{order_id}/address", response_model=AddressResponse)
async def get_order_address(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    view = await address_gate.get_consumer_address(db, order_id, current_user)
    return AddressResponse.model_validate(view)
