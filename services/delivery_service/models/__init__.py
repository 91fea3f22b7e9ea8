"""Delivery Service models package."""

from services.delivery_service.models.core import DeliveryBatch, DeliveryScanLog, Stop
from services.delivery_service.models.enums import (
    BatchStatus,
    ScanType,
    StopStatus,
    enum_values,
)

__all__ = [
    "BatchStatus",
    "DeliveryBatch",
    "DeliveryScanLog",
    "ScanType",
    "Stop",
    "StopStatus",
    "enum_values",
]
