"""
Inventory store: the only component that touches gift_code_inventory rows.

Every status change that matters for correctness goes through
`compare_and_set_status`, a single `UPDATE ... WHERE id = ? AND status = ?`
whose affected-row count tells the caller whether it won. No application
locks are taken; independent processes sharing the database stay correct.
"""
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import DuplicateCode, PersistenceError
from .models import EXPIRABLE_STATUSES, CodeStatus, GiftCode
from .schemas import GiftCodeRecord


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_record(row: GiftCode) -> GiftCodeRecord:
    return GiftCodeRecord(
        id=row.id,
        code_masked=row.code_masked,
        denomination=row.denomination,
        status=CodeStatus(row.status),
        encrypted_payload=row.encrypted_payload,
        encryption_key_ref=row.encryption_key_ref,
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        allocated_at=_utc(row.allocated_at),
        metadata=dict(row.meta or {}),
    )


class InventoryStore:
    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory

    # ---------- writes ----------

    def insert(
        self,
        *,
        code_fingerprint: str,
        code_masked: str,
        denomination: int,
        encrypted_payload: str,
        encryption_key_ref: str,
        created_at: datetime,
        expires_at: datetime,
        metadata: dict[str, Any],
    ) -> GiftCodeRecord:
        db = self.SessionLocal()
        try:
            row = GiftCode(
                code_fingerprint=code_fingerprint,
                code_masked=code_masked,
                denomination=denomination,
                status=CodeStatus.AVAILABLE.value,
                encrypted_payload=encrypted_payload,
                encryption_key_ref=encryption_key_ref,
                created_at=created_at,
                expires_at=expires_at,
                meta=dict(metadata),
            )
            db.add(row)
            db.commit()
            return to_record(row)
        except IntegrityError as e:
            db.rollback()
            # lost a race against a concurrent insert of the same code
            if self.exists_fingerprint(code_fingerprint):
                raise DuplicateCode("Gift code already exists") from e
            raise PersistenceError("add gift code", e) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("add gift code", e) from e
        finally:
            db.close()

    def compare_and_set_status(
        self,
        code_id: int,
        expected: CodeStatus,
        new: CodeStatus,
        **values: Any,
    ) -> bool:
        """Move `code_id` from `expected` to `new`. False if the row was not in `expected`.

        Extra `values` are keyed by mapped attribute name (e.g. `meta`, `allocated_at`).
        """
        assignments = {GiftCode.status: new.value}
        assignments.update({getattr(GiftCode, name): value for name, value in values.items()})
        stmt = (
            update(GiftCode)
            .where(GiftCode.id == code_id, GiftCode.status == expected.value)
            .values(assignments)
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, f"move gift code {code_id} to {new.value}") == 1

    def set_status(self, code_id: int, new: CodeStatus) -> int:
        stmt = (
            update(GiftCode)
            .where(GiftCode.id == code_id)
            .values(status=new.value)
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, "update gift code status")

    def expire_stale(self, now: datetime) -> int:
        stmt = (
            update(GiftCode)
            .where(
                GiftCode.status.in_([s.value for s in EXPIRABLE_STATUSES]),
                GiftCode.expires_at < now,
            )
            .values(status=CodeStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, "expire gift codes")

    def _execute_update(self, stmt, operation: str) -> int:
        db = self.SessionLocal()
        try:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(operation, e) from e
        finally:
            db.close()

    # ---------- reads ----------

    def get(self, code_id: int) -> Optional[GiftCodeRecord]:
        db = self.SessionLocal()
        try:
            row = db.get(GiftCode, code_id)
            return to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError("get gift code", e) from e
        finally:
            db.close()

    def exists_fingerprint(self, code_fingerprint: str) -> bool:
        db = self.SessionLocal()
        try:
            found = db.execute(
                select(GiftCode.id).where(GiftCode.code_fingerprint == code_fingerprint)
            ).first()
            return found is not None
        except SQLAlchemyError as e:
            raise PersistenceError("get gift code by code", e) from e
        finally:
            db.close()

    def list_available(self, now: datetime) -> list[GiftCodeRecord]:
        """AVAILABLE, unexpired codes, largest denomination first, oldest id first on ties."""
        return self._list(
            select(GiftCode)
            .where(GiftCode.status == CodeStatus.AVAILABLE.value, GiftCode.expires_at > now)
            .order_by(GiftCode.denomination.desc(), GiftCode.id.asc()),
            "get available codes",
        )

    def list_codes(self, status: Optional[CodeStatus] = None, limit: int = 500) -> list[GiftCodeRecord]:
        q = select(GiftCode)
        if status is not None:
            q = q.where(GiftCode.status == status.value)
        q = q.order_by(GiftCode.created_at.desc(), GiftCode.id.desc()).limit(limit)
        return self._list(q, "get all gift codes")

    def _list(self, stmt, operation: str) -> list[GiftCodeRecord]:
        db = self.SessionLocal()
        try:
            return [to_record(row) for row in db.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(operation, e) from e
        finally:
            db.close()

    def aggregate(self) -> Iterable[tuple[str, int, int, int]]:
        """(status, denomination, count, summed value) groups from one statement."""
        db = self.SessionLocal()
        try:
            rows = db.execute(
                select(
                    GiftCode.status,
                    GiftCode.denomination,
                    func.count(GiftCode.id),
                    func.coalesce(func.sum(GiftCode.denomination), 0),
                ).group_by(GiftCode.status, GiftCode.denomination)
            ).all()
            return [(status, denom, int(count), int(total)) for status, denom, count, total in rows]
        except SQLAlchemyError as e:
            raise PersistenceError("get inventory stats", e) from e
        finally:
            db.close()
