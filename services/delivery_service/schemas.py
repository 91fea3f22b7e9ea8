import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.delivery_service.models import BatchStatus, StopStatus


class StopResponse(BaseModel):
    """A stop as the caller is allowed to see it."""

    id: uuid.UUID
    sequence: int
    status: StopStatus
    is_collection_point: bool
    order_id: Optional[uuid.UUID] = None
    box_code: Optional[str] = None
    recipient_name: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    address_redacted: bool
    address_message: Optional[str] = None
    delivered_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BatchDetailResponse(BaseModel):
    id: uuid.UUID
    delivery_date: date
    zip_code: str
    batch_number: int
    status: BatchStatus
    driver_id: Optional[str] = None
    is_subsidized: bool
    stops: List[StopResponse] = []

    model_config = ConfigDict(from_attributes=True)


class BatchSummaryResponse(BaseModel):
    """Listing entry for available or assigned batches (no addresses)."""

    id: uuid.UUID
    delivery_date: date
    zip_code: str
    batch_number: int
    status: BatchStatus
    is_subsidized: bool
    stop_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class ScanRequest(BaseModel):
    box_code: str = Field(..., min_length=1, max_length=20)


class AddressResponse(BaseModel):
    order_id: uuid.UUID
    recipient_name: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    address_redacted: bool
    address_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GenerateBatchesRequest(BaseModel):
    delivery_date: date


class GenerateBatchesResponse(BaseModel):
    delivery_date: date
    batch_ids: List[uuid.UUID]
    orders_batched: int
    subsidized_batches: int

    model_config = ConfigDict(from_attributes=True)


class LockOrdersRequest(BaseModel):
    delivery_date: date


class LockOrdersResponse(BaseModel):
    delivery_date: date
    locked: int
