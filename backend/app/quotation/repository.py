"""
Quotation Repository

Session-per-operation SQLAlchemy repository. Every write after creation is
conditioned on the version the caller read (optimistic concurrency).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from app.db.models import QuotationEvent, QuotationRecord
from app.quotation.errors import ConcurrentModificationError, DependencyFailure, QuotationNotFoundError
from app.quotation.models import (
    Quotation,
    QuotationItem,
    QuotationStatus,
    StaffReply,
    generate_quotation_number,
    utcnow,
)

logger = logging.getLogger(__name__)

# Attempts at drawing an unused QUO-YYYYMMDD-NNNN number
MAX_NUMBER_ATTEMPTS = 5


def generate_event_id() -> str:
    """Event ID: QEV-YYYYMMDD-XXXXXXXX"""
    date_str = utcnow().strftime("%Y%m%d")
    return f"QEV-{date_str}-{uuid4().hex[:8].upper()}"


class QuotationRepository:
    """SQLAlchemy-backed repository for quotations and their transition events"""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        return self._session_factory()

    # === Writes ===

    async def add(self, quotation: Quotation, actor_id: Optional[str] = None) -> Quotation:
        """Insert a new quotation at version 1, redrawing the number on collision."""
        for attempt in range(MAX_NUMBER_ATTEMPTS):
            quotation.version = 1
            try:
                async with self._session() as session:
                    session.add(QuotationRecord(id=quotation.quotation_number, **self._to_values(quotation)))
                    await session.flush()
                    session.add(self._event(
                        quotation.quotation_number,
                        action="create",
                        actor_role="customer",
                        actor_id=actor_id,
                        from_status=None,
                        to_status=quotation.status.value,
                        version=1,
                        payload={"total_amount": quotation.total_amount},
                    ))
                    await session.commit()
            except IntegrityError:
                logger.warning(f"Quotation number collision on {quotation.quotation_number}, redrawing")
                quotation.quotation_number = generate_quotation_number(quotation.created_at)
                continue

            logger.info(f"Created quotation: {quotation.quotation_number} (total={quotation.total_amount})")
            return quotation

        raise DependencyFailure(
            "quotation store", f"could not allocate a quotation number after {MAX_NUMBER_ATTEMPTS} attempts",
        )

    async def save(
        self,
        quotation: Quotation,
        expected_version: int,
        event: Optional[Dict[str, Any]] = None,
    ) -> Quotation:
        """
        Write quotation if the stored version still equals expected_version.

        The optional event is recorded in the same transaction. Returns the
        quotation with its new version.
        """
        new_version = expected_version + 1
        values = self._to_values(quotation)

        async with self._session() as session:
            stmt = (
                update(QuotationRecord)
                .where(
                    QuotationRecord.id == quotation.quotation_number,
                    QuotationRecord.version == expected_version,
                )
                .values(version=new_version, **values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if result.rowcount == 0:
                await session.rollback()
                exists = await session.get(QuotationRecord, quotation.quotation_number)
                if exists is None:
                    raise QuotationNotFoundError(quotation.quotation_number)
                logger.warning(
                    f"Stale write on {quotation.quotation_number}: "
                    f"expected v{expected_version}, stored v{exists.version}"
                )
                raise ConcurrentModificationError(quotation.quotation_number, expected_version)

            if event:
                session.add(self._event(quotation.quotation_number, version=new_version, **event))
            await session.commit()

        quotation.version = new_version
        return quotation

    # === Reads ===

    async def get(self, quotation_number: str) -> Optional[Quotation]:
        async with self._session() as session:
            row = await session.get(QuotationRecord, quotation_number.strip().upper())
            if not row:
                return None
            return self._to_domain(row)

    async def list_quotations(
        self,
        status: Optional[QuotationStatus] = None,
        search: Optional[str] = None,
        user_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Quotation], int]:
        """List quotations, newest first. Returns (page of quotations, total matches)."""
        conditions = []
        if status:
            conditions.append(QuotationRecord.status == status.value)
        if user_id:
            conditions.append(QuotationRecord.user_id == user_id)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                QuotationRecord.id.ilike(pattern),
                QuotationRecord.customer_name.ilike(pattern),
                QuotationRecord.customer_email.ilike(pattern),
            ))

        page = max(page, 1)
        async with self._session() as session:
            count_stmt = select(func.count()).select_from(QuotationRecord).where(*conditions)
            total = (await session.execute(count_stmt)).scalar_one()

            stmt = (
                select(QuotationRecord)
                .where(*conditions)
                .order_by(QuotationRecord.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()

        return [self._to_domain(r) for r in rows], total

    async def list_overdue(self, now: Optional[datetime] = None) -> List[Quotation]:
        """Pending/approved quotations whose validUntil has passed."""
        async with self._session() as session:
            stmt = select(QuotationRecord).where(
                QuotationRecord.valid_until < (now or utcnow()),
                QuotationRecord.status.in_([QuotationStatus.PENDING.value, QuotationStatus.APPROVED.value]),
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [self._to_domain(r) for r in rows]

    async def count_by_status(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Counts per stored status, plus total.

        "expired" also counts pending/approved quotations past validUntil.
        """
        now = now or utcnow()
        async with self._session() as session:
            stmt = select(QuotationRecord.status, func.count()).group_by(QuotationRecord.status)
            rows = (await session.execute(stmt)).all()

            overdue_stmt = select(func.count()).select_from(QuotationRecord).where(
                QuotationRecord.valid_until < now,
                QuotationRecord.status.in_([QuotationStatus.PENDING.value, QuotationStatus.APPROVED.value]),
            )
            overdue = (await session.execute(overdue_stmt)).scalar_one()

        counts = {s.value: 0 for s in QuotationStatus}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(count for _, count in rows)
        counts[QuotationStatus.EXPIRED.value] += overdue
        return counts

    async def list_events(self, quotation_number: str) -> List[Dict[str, Any]]:
        async with self._session() as session:
            stmt = (
                select(QuotationEvent)
                .where(QuotationEvent.quotation_id == quotation_number)
                .order_by(QuotationEvent.version.asc(), QuotationEvent.created_at.asc())
            )
            rows = (await session.execute(stmt)).scalars().all()

        return [
            {
                "id": r.id,
                "quotation_number": r.quotation_id,
                "action": r.action,
                "actor_role": r.actor_role,
                "actor_id": r.actor_id,
                "from_status": r.from_status,
                "to_status": r.to_status,
                "version": r.version,
                "payload": r.payload or {},
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]

    # === Mapping ===

    @staticmethod
    def _event(
        quotation_number: str,
        action: str,
        actor_role: str,
        version: int,
        actor_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> QuotationEvent:
        return QuotationEvent(
            id=generate_event_id(),
            quotation_id=quotation_number,
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            version=version,
            payload=payload or {},
            created_at=utcnow(),
        )

    @staticmethod
    def _to_values(q: Quotation) -> Dict[str, Any]:
        """Quotation -> column values (excluding id and version)"""
        return {
            "status": q.status.value,
            "user_id": q.user_id,
            "customer_name": q.customer_name,
            "customer_email": q.customer_email,
            "customer_phone": q.customer_phone,
            "items": [i.to_dict() for i in q.items],
            "subtotal": q.subtotal,
            "tax_rate": q.tax_rate,
            "tax": q.tax,
            "discount": q.discount,
            "total_amount": q.total_amount,
            "notes": q.notes,
            "prescription_file": q.prescription_file,
            "valid_until": q.valid_until,
            "approved_at": q.approved_at,
            "approved_by": q.approved_by,
            "rejected_at": q.rejected_at,
            "rejected_by": q.rejected_by,
            "rejected_reason": q.rejected_reason,
            "staff_notes": q.staff_notes,
            "staff_replies": [r.to_dict() for r in q.staff_replies],
            "customer_approved_at": q.customer_approved_at,
            "customer_rejected_at": q.customer_rejected_at,
            "customer_rejection_reason": q.customer_rejection_reason,
            "converted_at": q.converted_at,
            "converted_to_order": q.converted_to_order,
            "created_at": q.created_at,
            "modified_at": q.modified_at,
        }

    @staticmethod
    def _to_domain(row: QuotationRecord) -> Quotation:
        """QuotationRecord ORM -> Quotation"""
        return Quotation(
            quotation_number=row.id,
            version=row.version,
            status=QuotationStatus(row.status),
            user_id=row.user_id,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            customer_phone=row.customer_phone,
            items=[QuotationItem.from_dict(i) for i in row.items or []],
            tax_rate=row.tax_rate,
            discount=row.discount,
            notes=row.notes,
            prescription_file=row.prescription_file,
            valid_until=row.valid_until,
            approved_at=row.approved_at,
            approved_by=row.approved_by,
            rejected_at=row.rejected_at,
            rejected_by=row.rejected_by,
            rejected_reason=row.rejected_reason,
            staff_notes=row.staff_notes,
            staff_replies=[StaffReply.from_dict(r) for r in row.staff_replies or []],
            customer_approved_at=row.customer_approved_at,
            customer_rejected_at=row.customer_rejected_at,
            customer_rejection_reason=row.customer_rejection_reason,
            converted_at=row.converted_at,
            converted_to_order=row.converted_to_order,
            created_at=row.created_at,
            modified_at=row.modified_at,
        )
