import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, UTCDateTime
from services.delivery_service.models.enums import (
    BatchStatus,
    ScanType,
    StopStatus,
    enum_values,
)
from sqlalchemy import Boolean, Date
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship


class DeliveryBatch(Base):
    """A route: the orders for one ZIP and delivery date a driver can claim."""

    __tablename__ = "delivery_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    zip_code: Mapped[str] = mapped_column(String(10), nullable=False)
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Claimed with a conditional UPDATE; null until a driver claims it.
    driver_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[BatchStatus] = mapped_column(
        SAEnum(BatchStatus, values_callable=enum_values, name="batch_status_enum"),
        default=BatchStatus.PENDING,
        server_default="pending",
        nullable=False,
    )
    is_subsidized: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )

    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    stops = relationship(
        "Stop",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="Stop.sequence",
    )

    __table_args__ = (
        UniqueConstraint("delivery_date", "batch_number", name="uq_batches_date_number"),
        Index("ix_batches_date_status", "delivery_date", "status"),
    )

    def __repr__(self):
        return f"<DeliveryBatch B{self.batch_number} {self.delivery_date} {self.status}>"


class Stop(Base):
    """A stop on a batch's route.

    Sequence 0 is the collection point (where the driver picks up the
    boxes); consumer stops follow from 1. The address columns are a copy of
    the order's snapshot and must only be read through the address gate.
    """

    __tablename__ = "delivery_stops"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("delivery_batches.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    is_collection_point: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[StopStatus] = mapped_column(
        SAEnum(StopStatus, values_callable=enum_values, name="stop_status_enum"),
        default=StopStatus.PENDING,
        server_default="pending",
        nullable=False,
    )

    box_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    street_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Set once, by the pickup scan.
    address_visible_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    batch = relationship("DeliveryBatch", back_populates="stops")

    __table_args__ = (
        UniqueConstraint("batch_id", "sequence", name="uq_stops_batch_sequence"),
        UniqueConstraint("batch_id", "box_code", name="uq_stops_batch_box_code"),
    )

    def __repr__(self):
        return f"<Stop #{self.sequence} batch={self.batch_id} {self.status}>"


class DeliveryScanLog(Base):
    """Append-only record of box scans."""

    __tablename__ = "delivery_scan_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    stop_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    driver_id: Mapped[str] = mapped_column(String(255), nullable=False)
    box_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    scan_type: Mapped[ScanType] = mapped_column(
        SAEnum(ScanType, values_callable=enum_values, name="scan_type_enum"),
        nullable=False,
    )
    scanned_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
