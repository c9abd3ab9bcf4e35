from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import (
    CodecError,
    CodeExpired,
    DuplicateCode,
    GiftCodeError,
    InvalidDenomination,
    InvalidFormat,
    InvalidMetadata,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    NotFoundOrUnchanged,
    PersistenceError,
)
from .idempotency import get_cached_response, set_cached_response
from .inventory import InventoryService
from .models import CodeStatus
from .schemas import GiftCodeRecord
from .security import verify_admin_token

# Ordered most specific first; first isinstance match wins
ERROR_STATUS = [
    (InvalidFormat, 400),
    (InvalidDenomination, 400),
    (InvalidMetadata, 400),
    (InvalidTransition, 400),
    (NotFound, 404),
    (NotFoundOrUnchanged, 404),
    (DuplicateCode, 409),
    (InvalidStatus, 409),
    (CodeExpired, 409),
    (PersistenceError, 500),
    (CodecError, 500),
]

# never leave the engine through the admin API
HIDDEN_FIELDS = {"plaintext_code", "encrypted_payload"}


# -------------------------
# Helpers
# -------------------------
def require_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail={"ok": False, "reason_code": "MISSING_TOKEN"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_admin_token(authorization[7:], request.app.state.settings.admin_token_secret)
    except ValueError as e:
        raise HTTPException(
            status_code=403 if str(e) == "FORBIDDEN" else 401,
            detail={"ok": False, "reason_code": str(e)},
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_inventory(request: Request) -> InventoryService:
    return request.app.state.inventory


def error_response(exc: GiftCodeError) -> JSONResponse:
    status_code = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "reason_code": exc.reason_code, "error": str(exc)},
    )


def _public(record: GiftCodeRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", exclude=HIDDEN_FIELDS)


def _expiry_in_past(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(timezone.utc)


def _invalid_expiry() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "reason_code": "INVALID_EXPIRY", "error": "expires_at must be in the future"},
    )


router = APIRouter(prefix="/admin/gift-codes", tags=["admin"], dependencies=[Depends(require_admin)])


# -------------------------
# Inventory intake
# -------------------------
class AddCodeReq(BaseModel):
    code: str
    denomination: int = Field(..., gt=0, description="Face value in cents")
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BulkAddReq(BaseModel):
    codes: list[str] = Field(..., min_length=1, max_length=5000)
    denomination: int = Field(..., gt=0, description="Face value in cents")
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("", status_code=201)
def add_code(req: AddCodeReq, inventory: InventoryService = Depends(get_inventory)):
    if _expiry_in_past(req.expires_at):
        return _invalid_expiry()
    metadata = {"source": "admin", **req.metadata}
    record = inventory.add_code(req.code, req.denomination, req.expires_at, metadata)
    return {"ok": True, "gift_code": _public(record)}


@router.post("/bulk")
async def add_codes_bulk(
    req: BulkAddReq,
    request: Request,
    inventory: InventoryService = Depends(get_inventory),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    redis = request.app.state.redis

    if idempotency_key:
        cached = await get_cached_response(redis, "bulk", idempotency_key)
        if cached:
            status_code, body = cached
            return JSONResponse(status_code=status_code, content=body)

    if _expiry_in_past(req.expires_at):
        return _invalid_expiry()

    metadata = {"source": "admin-bulk", **req.metadata}
    result = await run_in_threadpool(
        inventory.add_codes, req.codes, req.denomination, req.expires_at, metadata
    )

    body = {
        "ok": True,
        "gift_codes": [_public(r) for r in result.added],
        "errors": [e.model_dump(mode="json") for e in result.errors],
    }
    # 207: some codes went in, some did not
    status_code = 207 if result.errors else 201

    if idempotency_key:
        await set_cached_response(redis, "bulk", idempotency_key, status_code, body)
    return JSONResponse(status_code=status_code, content=body)


# -------------------------
# Reporting
# -------------------------
@router.get("")
def list_codes(
    status: Optional[CodeStatus] = None,
    limit: int = Query(default=500, ge=1, le=5000),
    inventory: InventoryService = Depends(get_inventory),
):
    return {"ok": True, "gift_codes": [_public(r) for r in inventory.list_codes(status, limit)]}


@router.get("/stats")
def get_stats(inventory: InventoryService = Depends(get_inventory)):
    return {"ok": True, "stats": inventory.get_stats().model_dump(mode="json")}


@router.get("/{code_id}")
def get_code(code_id: int, inventory: InventoryService = Depends(get_inventory)):
    return {"ok": True, "gift_code": _public(inventory.get_code(code_id))}


# -------------------------
# Maintenance
# -------------------------
class SetStatusReq(BaseModel):
    status: str


@router.put("/{code_id}/status")
def set_status(code_id: int, req: SetStatusReq, inventory: InventoryService = Depends(get_inventory)):
    inventory.set_status(code_id, req.status)
    return {"ok": True, "id": code_id, "status": req.status}


@router.post("/sweep")
def sweep(inventory: InventoryService = Depends(get_inventory)):
    return {"ok": True, "expired": inventory.sweep_expired()}
