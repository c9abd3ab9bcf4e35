"""
Gift code inventory service.

Core operations:
- add_code / add_codes: validate, encrypt and store new codes
- allocate: greedy, largest-fitting-denomination-first reservation
- redeem: ALLOCATED -> REDEEMED with one-time plaintext delivery
- sweep_expired: AVAILABLE|ALLOCATED -> EXPIRED once past expires_at
- get_stats: counts and values by status and denomination

All amounts are integer cents. State changes go through the store's
conditional updates; this module never writes a row directly.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Union

from . import crypto
from .errors import (
    CodeExpired,
    DuplicateCode,
    GiftCodeError,
    InsufficientInventory,
    InvalidDenomination,
    InvalidFormat,
    InvalidMetadata,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    NotFoundOrUnchanged,
)
from .models import CodeStatus
from .schemas import (
    AllocationResult,
    BulkAddError,
    BulkAddResult,
    GiftCodeRecord,
    InventoryStats,
    RedemptionResult,
)
from .store import InventoryStore
from .validation import is_valid_format

logger = logging.getLogger(__name__)

INSUFFICIENT_INVENTORY = "Insufficient gift codes available"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_amount(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidDenomination(f"{what} must be a positive integer number of cents")
    return value


def _check_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise InvalidMetadata("metadata must be a JSON object")
    try:
        json.dumps(metadata)
    except (TypeError, ValueError) as e:
        raise InvalidMetadata(f"metadata is not JSON serializable: {e}") from e
    return metadata


class InventoryService:
    """Service for managing the gift code inventory."""

    def __init__(
        self,
        store: InventoryStore,
        keyring: crypto.Keyring,
        fingerprint_secret: str,
        default_ttl: timedelta = timedelta(days=365),
    ):
        self.store = store
        self.keyring = keyring
        self.fingerprint_secret = fingerprint_secret
        self.default_ttl = default_ttl

    @staticmethod
    def is_valid_format(code) -> bool:
        return is_valid_format(code)

    # ==================== INSERTION ====================

    def add_code(
        self,
        code: str,
        denomination: int,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GiftCodeRecord:
        """
        Validate, encrypt and store a new AVAILABLE code.

        Raises InvalidFormat, InvalidDenomination, InvalidMetadata, DuplicateCode or
        PersistenceError. The returned copy is the only place the plaintext
        appears after this call.
        """
        if not is_valid_format(code):
            raise InvalidFormat("Invalid gift code format")
        _check_amount(denomination, "denomination")
        metadata = _check_metadata(metadata)

        code_fingerprint = crypto.fingerprint(code, self.fingerprint_secret)
        if self.store.exists_fingerprint(code_fingerprint):
            raise DuplicateCode("Gift code already exists")

        key_ref, key = self.keyring.active()
        now = _utcnow()
        record = self.store.insert(
            code_fingerprint=code_fingerprint,
            code_masked=crypto.mask_code(code),
            denomination=denomination,
            encrypted_payload=crypto.encrypt(code, key),
            encryption_key_ref=key_ref,
            created_at=now,
            expires_at=_as_utc(expires_at) if expires_at else now + self.default_ttl,
            metadata=metadata,
        )
        logger.info(f"Added gift code id={record.id} {record.code_masked} denomination={denomination}")
        return record.model_copy(update={"plaintext_code": code})

    def add_codes(
        self,
        codes: Iterable[str],
        denomination: int,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> BulkAddResult:
        """Add each code independently; per-code failures are collected, not raised."""
        result = BulkAddResult()
        for code in codes:
            try:
                result.added.append(self.add_code(code, denomination, expires_at, metadata))
            except GiftCodeError as e:
                masked = crypto.mask_code(code) if is_valid_format(code) else None
                result.errors.append(
                    BulkAddError(code_masked=masked, reason_code=e.reason_code, error=str(e))
                )
        if result.errors:
            logger.warning(f"Bulk add: {len(result.added)} added, {len(result.errors)} rejected")
        return result

    # ==================== ALLOCATION ====================

    def allocate(self, target_amount: int) -> AllocationResult:
        """
        Reserve AVAILABLE codes whose denominations sum exactly to `target_amount`.

        Single greedy pass over candidates ordered by denomination descending:
        a candidate is taken only if it fits the remaining gap, and only if its
        conditional AVAILABLE -> ALLOCATED update wins. A lost update means
        another allocation claimed the code; it is skipped, never retried.
        """
        _check_amount(target_amount, "target amount")
        now = _utcnow()
        candidates = self.store.list_available(now)
        logger.info(f"Allocating {target_amount}c from {len(candidates)} available codes")

        remaining = target_amount
        allocated: list[GiftCodeRecord] = []
        total_allocated = 0

        for candidate in candidates:
            if remaining == 0:
                break
            if candidate.denomination > remaining:
                continue

            claimed = self.store.compare_and_set_status(
                candidate.id,
                CodeStatus.AVAILABLE,
                CodeStatus.ALLOCATED,
                allocated_at=now,
            )
            if not claimed:
                logger.debug(f"Code {candidate.id} was claimed concurrently, skipping")
                continue

            allocated.append(
                candidate.model_copy(update={"status": CodeStatus.ALLOCATED, "allocated_at": now})
            )
            remaining -= candidate.denomination
            total_allocated += candidate.denomination

        if remaining == 0:
            logger.info(f"Allocated {len(allocated)} codes for {target_amount}c")
            return AllocationResult(
                success=True,
                allocated_codes=allocated,
                total_allocated=total_allocated,
                remaining_amount=0,
            )

        # Codes claimed above stay ALLOCATED. This is a compensatable side
        # effect: callers needing all-or-nothing call release_codes() on
        # allocated_codes.
        logger.warning(
            f"Allocation for {target_amount}c fell short by {remaining}c; "
            f"{len(allocated)} codes ({total_allocated}c) left reserved"
        )
        return AllocationResult(
            success=False,
            allocated_codes=allocated,
            total_allocated=total_allocated,
            remaining_amount=remaining,
            error=INSUFFICIENT_INVENTORY,
            reason_code=InsufficientInventory.reason_code,
        )

    def release_codes(self, code_ids: Iterable[int]) -> int:
        """Return ALLOCATED codes to AVAILABLE. Ids in any other status are skipped."""
        released = 0
        for code_id in code_ids:
            if self.store.compare_and_set_status(
                code_id, CodeStatus.ALLOCATED, CodeStatus.AVAILABLE, allocated_at=None
            ):
                released += 1
        logger.info(f"Released {released} allocated codes")
        return released

    # ==================== REDEMPTION ====================

    def redeem(self, code_id: int, order_reference: str) -> RedemptionResult:
        """
        Consume an ALLOCATED, unexpired code and hand back its plaintext once.

        Codec errors from decryption propagate unchanged. Only the encrypted
        payload stays at rest.
        """
        record = self.store.get(code_id)
        if record is None:
            raise NotFound(f"Gift code {code_id} not found")
        if record.status != CodeStatus.ALLOCATED:
            raise InvalidStatus(record.status.value)

        now = _utcnow()
        # the sweep may not have run yet, so expiry is checked on its own
        if record.expires_at <= now:
            raise CodeExpired("Code expired")

        plaintext = crypto.decrypt(
            record.encrypted_payload, self.keyring.get(record.encryption_key_ref)
        )

        metadata = {**record.metadata, "redeemedAt": now.isoformat(), "orderId": order_reference}
        if not self.store.compare_and_set_status(
            code_id, CodeStatus.ALLOCATED, CodeStatus.REDEEMED, meta=metadata
        ):
            current = self.store.get(code_id)
            raise InvalidStatus(current.status.value if current else "MISSING")

        logger.info(f"Redeemed gift code id={code_id} {record.code_masked} for order {order_reference}")
        return RedemptionResult(
            success=True,
            redeemed_code=record.model_copy(
                update={
                    "status": CodeStatus.REDEEMED,
                    "metadata": metadata,
                    "plaintext_code": plaintext,
                }
            ),
        )

    # ==================== MAINTENANCE ====================

    def sweep_expired(self) -> int:
        count = self.store.expire_stale(_utcnow())
        if count > 0:
            logger.info(f"Expired {count} gift codes")
        return count

    def set_status(self, code_id: int, status: Union[CodeStatus, str]) -> bool:
        """Unconditional administrative status change."""
        try:
            new_status = CodeStatus(status)
        except ValueError:
            raise InvalidTransition(f"Unknown status {status!r}")

        if self.store.set_status(code_id, new_status) == 0:
            raise NotFoundOrUnchanged("Gift code not found or no changes made")
        logger.info(f"Status of gift code {code_id} set to {new_status.value}")
        return True

    # ==================== READS ====================

    def get_code(self, code_id: int) -> GiftCodeRecord:
        record = self.store.get(code_id)
        if record is None:
            raise NotFound(f"Gift code {code_id} not found")
        return record

    def list_codes(self, status: Optional[CodeStatus] = None, limit: int = 500) -> list[GiftCodeRecord]:
        return self.store.list_codes(status=status, limit=limit)

    def get_stats(self) -> InventoryStats:
        stats = InventoryStats()
        per_status = {
            CodeStatus.AVAILABLE.value: "available",
            CodeStatus.ALLOCATED.value: "allocated",
            CodeStatus.REDEEMED.value: "redeemed",
            CodeStatus.EXPIRED.value: "expired",
        }
        for status, denomination, count, value in self.store.aggregate():
            stats.total += count
            stats.total_value += value
            stats.denominations[denomination] = stats.denominations.get(denomination, 0) + count

            field = per_status[status]
            setattr(stats, field, getattr(stats, field) + count)
            if status == CodeStatus.AVAILABLE.value:
                stats.available_value += value
                stats.available_denominations[denomination] = count
        return stats
