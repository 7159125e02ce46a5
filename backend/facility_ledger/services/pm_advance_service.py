"""
PM Advance Service - cash floats handed to project managers
"""
from typing import Any, Dict, Optional
from decimal import Decimal
from datetime import datetime
import logging

from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.exceptions import BusinessRuleError, NotFoundError
from facility_ledger.models import PMAdvance, Project, Staff
from facility_ledger.services.formatting import to_decimal, iso

logger = logging.getLogger(__name__)


def serialize_pm_advance(advance: PMAdvance) -> Dict[str, Any]:
    return {
        "id": advance.id,
        "staff": {"id": advance.staff.id, "name": advance.staff.name} if advance.staff else None,
        "project": {"id": advance.project.id, "name": advance.project.name} if advance.project else None,
        "amount": to_decimal(advance.amount),
        "remainingAmount": to_decimal(advance.remaining_amount),
        "notes": advance.notes,
        "createdAt": iso(advance.created_at),
    }


class PMAdvanceService:
    def __init__(self, db: Session):
        self.db = db

    def lookup_query(self, for_update: bool = False):
        if for_update:
            return self.db.query(PMAdvance).with_for_update(of=PMAdvance)
        return self.db.query(PMAdvance).options(
            joinedload(PMAdvance.staff),
            joinedload(PMAdvance.project)
        )

    def get_by_id(self, advance_id: int, for_update: bool = False) -> Optional[PMAdvance]:
        return self.lookup_query(for_update).filter(PMAdvance.id == advance_id).first()

    def create(self, staff: Staff, amount: Decimal, project_id: Optional[int] = None, notes: Optional[str] = None) -> PMAdvance:
        if project_id is not None:
            project = self.db.query(Project).filter(Project.id == project_id).first()
            if not project:
                raise NotFoundError(
                    "Project not found",
                    en="The specified project does not exist.",
                    ar="المشروع المحدد غير موجود.",
                    issues={"projectId": project_id}
                )

        advance = PMAdvance(
            staff_id=staff.id,
            project_id=project_id,
            amount=amount,
            remaining_amount=amount,
            notes=(notes or "").strip() or None
        )
        self.db.add(advance)
        self.db.flush()
        self.db.refresh(advance)

        logger.info(f"PM advance {advance.id} created for staff {staff.id}: {amount}")
        return advance

    def draw(self, advance: PMAdvance, amount: Decimal) -> PMAdvance:
        """
        Decrease the remaining balance by amount.

        The balance check is part of the UPDATE itself, so two concurrent
        draws can never take the balance below zero.
        """
        remaining = to_decimal(advance.remaining_amount)
        if remaining < amount:
            raise self._insufficient(advance, remaining, amount)

        updated = self.db.query(PMAdvance).filter(
            PMAdvance.id == advance.id,
            PMAdvance.remaining_amount >= amount
        ).update({
            PMAdvance.remaining_amount: PMAdvance.remaining_amount - amount,
            PMAdvance.updated_at: datetime.utcnow()
        }, synchronize_session=False)

        if updated == 0:
            self.db.refresh(advance)
            raise self._insufficient(advance, to_decimal(advance.remaining_amount), amount)

        self.db.flush()
        self.db.refresh(advance)
        logger.info(f"PM advance {advance.id} drawn by {amount}, remaining {advance.remaining_amount}")
        return advance

    @staticmethod
    def _insufficient(advance: PMAdvance, remaining: Decimal, needed: Decimal) -> BusinessRuleError:
        return BusinessRuleError(
            "Insufficient PM advance balance",
            en="This PM advance does not have enough balance.",
            ar="العهدة لا تحتوي على رصيد كافٍ.",
            issues={"pmAdvanceId": advance.id, "remaining": remaining, "needed": to_decimal(needed)}
        )
