"""
SQLAlchemy models for fax transmissions and inbound carrier callbacks.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from faxrelay.carriers.interface import FaxStatus
from faxrelay.shared.database import Base


class FaxRecord(Base):
    """One user-initiated fax transmission."""

    __tablename__ = "faxes"
    __table_args__ = (
        CheckConstraint("pages IS NULL OR pages >= 0", name="ck_faxes_pages_non_negative"),
        CheckConstraint("cost IS NULL OR cost >= 0", name="ck_faxes_cost_non_negative"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    carrier: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_fax_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )
    friendly_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[FaxStatus] = mapped_column(
        SQLEnum(
            FaxStatus,
            name="fax_status",
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=FaxStatus.QUEUED,
        index=True,
    )
    original_status: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    document_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sender_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    client_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    record_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<FaxRecord {self.provider_fax_id} {self.status.value}>"


class FaxWebhookEvent(Base):
    """Append-only audit entry for every accepted carrier callback."""

    __tablename__ = "fax_webhook_events"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    external_event_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    carrier: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_fax_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
