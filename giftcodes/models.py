import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class CodeStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ALLOCATED = "ALLOCATED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = (CodeStatus.REDEEMED, CodeStatus.EXPIRED)
EXPIRABLE_STATUSES = (CodeStatus.AVAILABLE, CodeStatus.ALLOCATED)


class GiftCode(Base):
    __tablename__ = "gift_code_inventory"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code_fingerprint: Mapped[str] = mapped_column(String(64), unique=True)
    code_masked: Mapped[str] = mapped_column(String)
    denomination: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[str] = mapped_column(String(16), index=True, default=CodeStatus.AVAILABLE.value)
    encrypted_payload: Mapped[str] = mapped_column(Text)
    encryption_key_ref: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    allocated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    __table_args__ = (
        CheckConstraint("denomination > 0", name="ck_denomination_positive"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'ALLOCATED', 'REDEEMED', 'EXPIRED')",
            name="ck_status_known",
        ),
    )
