"""
Expense Service - unit expense listing, breakdown and period trend
"""
from typing import Any, Dict, List, Optional
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date, timedelta
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from facility_ledger.models import UnitExpense, OperationalUnit
from facility_ledger.services.expense_search_service import SearchAnalysis, build_description_filter
from facility_ledger.services.formatting import to_decimal, iso

logger = logging.getLogger(__name__)


def serialize_unit_expense(expense: UnitExpense) -> Dict[str, Any]:
    return {
        "id": expense.id,
        "unitId": expense.unit_id,
        "unitCode": expense.unit.code if expense.unit else None,
        "description": expense.description,
        "amount": to_decimal(expense.amount),
        "sourceType": expense.source_type,
        "date": iso(expense.date),
    }


def percent(part: Decimal, whole: Decimal) -> Optional[Decimal]:
    if not whole:
        return None
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


class ExpenseService:
    def __init__(self, db: Session):
        self.db = db

    def _filtered(
        self,
        project_id: Optional[int],
        unit_id: Optional[int],
        unit_code: Optional[str],
        source_types: Optional[List[str]],
        analysis: Optional[SearchAnalysis],
        from_date: Optional[date],
        to_date: Optional[date],
        extra_filter
    ):
        query = self.db.query(UnitExpense)

        if unit_id is not None:
            query = query.filter(UnitExpense.unit_id == unit_id)
        if unit_code:
            query = query.filter(UnitExpense.unit.has(
                func.lower(OperationalUnit.code) == unit_code.strip().lower()
            ))
        if project_id is not None:
            query = query.filter(UnitExpense.unit.has(OperationalUnit.project_id == project_id))
        if source_types:
            query = query.filter(UnitExpense.source_type.in_(source_types))
        if analysis is not None:
            description_filter = build_description_filter(UnitExpense.description, analysis)
            if description_filter is not None:
                query = query.filter(description_filter)
        if from_date:
            query = query.filter(UnitExpense.date >= datetime.combine(from_date, datetime.min.time()))
        if to_date:
            query = query.filter(UnitExpense.date < datetime.combine(to_date + timedelta(days=1), datetime.min.time()))
        if extra_filter is not None:
            query = query.filter(extra_filter)
        return query

    @staticmethod
    def _totals(query):
        count, total = query.with_entities(
            func.count(UnitExpense.id),
            func.coalesce(func.sum(UnitExpense.amount), 0)
        ).one()
        return int(count or 0), to_decimal(total)

    def list_unit_expenses(
        self,
        project_id: Optional[int] = None,
        unit_id: Optional[int] = None,
        unit_code: Optional[str] = None,
        source_types: Optional[List[str]] = None,
        analysis: Optional[SearchAnalysis] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        extra_filter=None,
        limit: int = 10
    ) -> Dict[str, Any]:
        """
        Rows plus aggregates over the whole filtered set.

        Explicit source types win over the ones recognized in the search text.
        With both dates given, the same filters are applied to the preceding
        period of equal length to compute the trend.
        """
        if not source_types and analysis is not None and analysis.matched_source_types:
            source_types = analysis.matched_source_types

        filters = dict(
            project_id=project_id,
            unit_id=unit_id,
            unit_code=unit_code,
            source_types=source_types,
            analysis=analysis,
            extra_filter=extra_filter,
        )
        query = self._filtered(from_date=from_date, to_date=to_date, **filters)
        count, total = self._totals(query)

        breakdown = []
        for source_type, row_count, amount in query.with_entities(
            UnitExpense.source_type, func.count(UnitExpense.id), func.sum(UnitExpense.amount)
        ).group_by(UnitExpense.source_type).all():
            amount = to_decimal(amount)
            breakdown.append({
                "sourceType": source_type,
                "count": int(row_count),
                "amount": amount,
                "share": percent(amount, total),
            })
        breakdown.sort(key=lambda entry: (-entry["amount"], entry["sourceType"]))

        rows = query.options(joinedload(UnitExpense.unit)).order_by(
            UnitExpense.date.desc(), UnitExpense.id.desc()
        ).limit(limit).all()

        result = {
            "expenses": [serialize_unit_expense(expense) for expense in rows],
            "totals": {
                "count": count,
                "amount": total,
                "average": to_decimal(total / count) if count else Decimal("0.00"),
            },
            "sourceBreakdown": breakdown,
            "topCategory": breakdown[0] if breakdown else None,
            "appliedSourceTypes": source_types or [],
            "trend": None,
        }

        if from_date and to_date:
            length = (to_date - from_date).days + 1
            previous_to = from_date - timedelta(days=1)
            previous_from = previous_to - timedelta(days=length - 1)
            previous_count, previous_total = self._totals(
                self._filtered(from_date=previous_from, to_date=previous_to, **filters)
            )
            result["trend"] = self.trend(total, previous_total, previous_count, previous_from, previous_to)

        return result

    @staticmethod
    def trend(current: Decimal, previous: Decimal, previous_count: int,
              previous_from: date, previous_to: date) -> Dict[str, Any]:
        if previous_count == 0:
            direction = "NO_DATA"
        elif current > previous:
            direction = "UP"
        elif current < previous:
            direction = "DOWN"
        else:
            direction = "SAME"

        return {
            "direction": direction,
            "previousPeriod": {"fromDate": previous_from.isoformat(), "toDate": previous_to.isoformat()},
            "previousTotal": previous,
            "change": to_decimal(current - previous),
            "changePercent": percent(current - previous, previous),
        }
