"""
Staff Advance Service - salary advances and their PENDING -> DEDUCTED lifecycle
"""
from typing import Any, Dict, List, Optional
from decimal import Decimal
from datetime import datetime, date, timedelta
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.exceptions import (
    BusinessRuleError, ConflictError, NotFoundError, AmbiguousMatchError
)
from facility_ledger.models import (
    Staff, StaffAdvance, StaffProjectAssignment, OperationalUnit, AdvanceStatus
)
from facility_ledger.services.formatting import to_decimal, iso

logger = logging.getLogger(__name__)


def serialize_staff_advance(advance: StaffAdvance) -> Dict[str, Any]:
    return {
        "id": advance.id,
        "staffId": advance.staff_id,
        "staffName": advance.staff.name if advance.staff else None,
        "amount": to_decimal(advance.amount),
        "status": advance.status,
        "note": advance.note,
        "date": iso(advance.date),
        "deductedFromPayrollId": advance.deducted_from_payroll_id,
        "createdAt": iso(advance.created_at),
    }


def _advance_not_found(advance_id: Optional[int]) -> NotFoundError:
    return NotFoundError(
        "Advance not found",
        en="I could not find a staff advance with that id.",
        ar="لم أعثر على سلفة بهذا المعرف.",
        issues={"advanceId": advance_id}
    )


class StaffAdvanceService:
    def __init__(self, db: Session):
        self.db = db

    def lookup_query(self, for_update: bool = False):
        if for_update:
            return self.db.query(StaffAdvance).with_for_update(of=StaffAdvance)
        return self.db.query(StaffAdvance).options(joinedload(StaffAdvance.staff))

    def get_by_id(self, advance_id: int, for_update: bool = False) -> Optional[StaffAdvance]:
        return self.lookup_query(for_update).filter(StaffAdvance.id == advance_id).first()

    def pending_summary(self, staff_id: int) -> Dict[str, Any]:
        """Count and total of the staff member's PENDING advances"""
        count, total = self.db.query(
            func.count(StaffAdvance.id),
            func.coalesce(func.sum(StaffAdvance.amount), 0)
        ).filter(
            StaffAdvance.staff_id == staff_id,
            StaffAdvance.status == AdvanceStatus.PENDING.value
        ).one()
        return {"staffId": staff_id, "pendingCount": int(count or 0), "pendingAmount": to_decimal(total)}

    @staticmethod
    def _shift_summary(summary: Dict[str, Any], count_delta: int, amount_delta: Decimal) -> Dict[str, Any]:
        return {
            "staffId": summary["staffId"],
            "pendingCount": summary["pendingCount"] + count_delta,
            "pendingAmount": to_decimal(summary["pendingAmount"] + amount_delta),
        }

    def find_single_pending(self, staff: Staff) -> StaffAdvance:
        """The one PENDING advance of a staff member, used when no advance id was sent"""
        advances = self.db.query(StaffAdvance).options(
            joinedload(StaffAdvance.staff)
        ).filter(
            StaffAdvance.staff_id == staff.id,
            StaffAdvance.status == AdvanceStatus.PENDING.value
        ).order_by(StaffAdvance.date.desc(), StaffAdvance.id.desc()).all()

        if not advances:
            raise NotFoundError(
                "No pending advance for staff",
                en=f"{staff.name} has no pending advance.",
                ar=f"لا توجد سلفة معلقة للموظف {staff.name}.",
                issues={"staffId": staff.id}
            )

        if len(advances) > 1:
            raise AmbiguousMatchError(
                "Staff has several pending advances",
                en=f"{staff.name} has {len(advances)} pending advances. Which one do you mean?",
                ar=f"يوجد {len(advances)} سلف معلقة للموظف {staff.name}. أي واحدة تقصد؟",
                issues={"staffId": staff.id, "advanceIds": [advance.id for advance in advances]},
                suggestions=[{
                    "title": "Choose the advance",
                    "prompt": "Reply with the advance id to use.",
                    "data": {"options": [serialize_staff_advance(advance) for advance in advances]},
                }]
            )

        return self.get_by_id(advances[0].id, for_update=True)

    def resolve_advance(self, advance_id: Optional[int], staff: Optional[Staff]) -> StaffAdvance:
        if advance_id is not None:
            advance = self.get_by_id(advance_id, for_update=True)
            if advance is None:
                raise _advance_not_found(advance_id)
            return advance
        return self.find_single_pending(staff)

    def create(self, staff: Staff, amount: Decimal, note: Optional[str] = None):
        """Record a PENDING advance; returns the advance and the updated pending summary"""
        before = self.pending_summary(staff.id)

        advance = StaffAdvance(
            staff_id=staff.id,
            amount=amount,
            note=(note or "").strip() or None,
            status=AdvanceStatus.PENDING.value,
            date=datetime.utcnow()
        )
        self.db.add(advance)
        self.db.flush()
        self.db.refresh(advance)

        logger.info(f"Staff advance {advance.id} created for staff {staff.id}: {amount}")
        return advance, self._shift_summary(before, 1, Decimal(amount))

    def _guard_pending(self, advance: StaffAdvance, verb: str):
        if advance.status != AdvanceStatus.PENDING.value:
            if verb == "edit":
                raise BusinessRuleError(
                    "Only pending advances can be edited",
                    en="This advance is already deducted and cannot be edited.",
                    ar="هذه السلفة تم خصمها ولا يمكن تعديلها.",
                    issues={"advanceId": advance.id, "status": advance.status}
                )
            raise BusinessRuleError(
                "Cannot delete deducted advances",
                en="This advance is already deducted and cannot be removed.",
                ar="هذه السلفة تم خصمها ولا يمكن حذفها.",
                issues={"advanceId": advance.id, "status": advance.status}
            )

    def update(self, advance: StaffAdvance, changes: Dict[str, Any]):
        """
        Apply amount and/or note changes to a PENDING advance.

        The status check is repeated inside the UPDATE so a payroll paid in
        between makes the write a no-op that is reported as a conflict.
        """
        self._guard_pending(advance, "edit")
        before = self.pending_summary(advance.staff_id)
        old_amount = Decimal(advance.amount)

        values: Dict[str, Any] = {"updated_at": datetime.utcnow()}
        if "amount" in changes:
            values["amount"] = changes["amount"]
        if "note" in changes:
            values["note"] = (changes["note"] or "").strip() or None

        updated = self.db.query(StaffAdvance).filter(
            StaffAdvance.id == advance.id,
            StaffAdvance.status == AdvanceStatus.PENDING.value
        ).update(values, synchronize_session=False)

        if updated == 0:
            raise ConflictError(
                "Advance changed while updating",
                en="This advance is already deducted and cannot be edited.",
                ar="هذه السلفة تم خصمها ولا يمكن تعديلها.",
                issues={"advanceId": advance.id}
            )

        self.db.flush()
        self.db.refresh(advance)
        delta = Decimal(advance.amount) - old_amount
        return advance, self._shift_summary(before, 0, delta)

    def delete(self, advance: StaffAdvance):
        self._guard_pending(advance, "delete")
        before = self.pending_summary(advance.staff_id)
        data = serialize_staff_advance(advance)

        deleted = self.db.query(StaffAdvance).filter(
            StaffAdvance.id == advance.id,
            StaffAdvance.status == AdvanceStatus.PENDING.value
        ).delete(synchronize_session=False)

        if deleted == 0:
            raise ConflictError(
                "Advance changed while deleting",
                en="This advance is already deducted and cannot be removed.",
                ar="هذه السلفة تم خصمها ولا يمكن حذفها.",
                issues={"advanceId": advance.id}
            )

        self.db.expunge(advance)
        logger.info(f"Staff advance {data['id']} deleted")
        return data, self._shift_summary(before, -1, -data["amount"])

    def list(
        self,
        staff_ids: Optional[List[int]] = None,
        project_id: Optional[int] = None,
        status: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        extra_filter=None,
        limit: int = 10
    ) -> Dict[str, Any]:
        """Rows plus totals and a per-staff breakdown over the whole filtered set"""
        query = self.db.query(StaffAdvance).join(Staff, StaffAdvance.staff_id == Staff.id)

        if staff_ids is not None:
            query = query.filter(StaffAdvance.staff_id.in_(staff_ids))
        if project_id is not None:
            query = query.filter(or_(
                Staff.unit.has(OperationalUnit.project_id == project_id),
                Staff.project_assignments.any(StaffProjectAssignment.project_id == project_id)
            ))
        if status:
            query = query.filter(StaffAdvance.status == status)
        if from_date:
            query = query.filter(StaffAdvance.date >= datetime.combine(from_date, datetime.min.time()))
        if to_date:
            query = query.filter(StaffAdvance.date < datetime.combine(to_date + timedelta(days=1), datetime.min.time()))
        if extra_filter is not None:
            query = query.filter(extra_filter)

        totals = query.with_entities(
            func.count(StaffAdvance.id),
            func.coalesce(func.sum(StaffAdvance.amount), 0)
        ).one()

        by_status = {
            row_status: {"count": int(count), "amount": to_decimal(amount)}
            for row_status, count, amount in query.with_entities(
                StaffAdvance.status, func.count(StaffAdvance.id), func.sum(StaffAdvance.amount)
            ).group_by(StaffAdvance.status).all()
        }

        per_staff = [
            {"staffId": staff_id, "name": name, "count": int(count), "amount": to_decimal(amount)}
            for staff_id, name, count, amount in query.with_entities(
                Staff.id, Staff.name, func.count(StaffAdvance.id), func.sum(StaffAdvance.amount)
            ).group_by(Staff.id, Staff.name).order_by(func.sum(StaffAdvance.amount).desc(), Staff.id).all()
        ]

        rows = query.options(joinedload(StaffAdvance.staff)).order_by(
            StaffAdvance.date.desc(), StaffAdvance.id.desc()
        ).limit(limit).all()

        return {
            "advances": [serialize_staff_advance(advance) for advance in rows],
            "totals": {
                "count": int(totals[0] or 0),
                "amount": to_decimal(totals[1]),
                "byStatus": by_status,
            },
            "byStaff": per_staff,
        }
