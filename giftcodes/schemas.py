from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .models import CodeStatus


class GiftCodeRecord(BaseModel):
    """Copy of a stored row. `plaintext_code` is only filled on add and redeem results."""
    id: int
    code_masked: str
    denomination: int
    status: CodeStatus
    encrypted_payload: str
    encryption_key_ref: str
    created_at: datetime
    expires_at: datetime
    allocated_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    plaintext_code: Optional[str] = None


class AllocationResult(BaseModel):
    success: bool
    allocated_codes: list[GiftCodeRecord] = Field(default_factory=list)
    total_allocated: int = 0
    remaining_amount: int = 0
    error: Optional[str] = None
    reason_code: Optional[str] = None


class RedemptionResult(BaseModel):
    success: bool
    redeemed_code: GiftCodeRecord
    error: Optional[str] = None


class InventoryStats(BaseModel):
    total: int = 0
    available: int = 0
    allocated: int = 0
    redeemed: int = 0
    expired: int = 0
    total_value: int = 0
    available_value: int = 0
    denominations: dict[int, int] = Field(default_factory=dict)
    available_denominations: dict[int, int] = Field(default_factory=dict)


class BulkAddError(BaseModel):
    code_masked: Optional[str] = None
    reason_code: str
    error: str


class BulkAddResult(BaseModel):
    added: list[GiftCodeRecord] = Field(default_factory=list)
    errors: list[BulkAddError] = Field(default_factory=list)
