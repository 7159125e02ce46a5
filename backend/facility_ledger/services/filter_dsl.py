"""
Filter DSL for list actions

    amount > 100 AND date >= 2024-01-01 AND status = PENDING
    sourceType IN (ELECTRICITY, "OTHER")

Conditions are joined with AND; OR is reported as unsupported. Every entity
declares which fields it accepts and how each maps onto a SQL clause.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import re

from sqlalchemy import and_, func, not_, or_

from facility_ledger.models import (
    AccountingNote, AdvanceStatus, ExpenseSourceType, FundingSource, NoteStatus,
    OperationalUnit, StaffAdvance, UnitExpense
)

CONDITION_RE = re.compile(
    r"^\s*([a-zA-Z_.]+)\s*(<=|>=|!=|=|<|>|NOT\s+IN(?=\s|\()|IN(?=\s|\())\s*(.+)$",
    re.IGNORECASE
)
CONNECTOR_RE = re.compile(r"(AND|OR)(?=\s|$)", re.IGNORECASE)

COMPARISON_OPS = ("=", "!=", ">", ">=", "<", "<=")
LIST_OPS = ("IN", "NOT IN")


class FilterParseResult:
    def __init__(self, clauses: Optional[List] = None, errors: Optional[List[str]] = None):
        self.clauses = clauses or []
        self.errors = errors or []

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def expression(self):
        if not self.clauses:
            return None
        return self.clauses[0] if len(self.clauses) == 1 else and_(*self.clauses)


def split_conditions(text: str) -> Tuple[List[str], List[str]]:
    """Split on AND / OR outside quotes and parentheses"""
    conditions, connectors = [], []
    buffer = ""
    quote = None
    depth = 0
    index = 0

    while index < len(text):
        char = text[index]
        if char in ("'", '"'):
            if quote == char:
                quote = None
            elif quote is None:
                quote = char
        elif quote is None and char == "(":
            depth += 1
        elif quote is None and char == ")":
            depth = max(0, depth - 1)
        elif quote is None and depth == 0 and (index == 0 or text[index - 1].isspace()):
            match = CONNECTOR_RE.match(text, index)
            if match:
                if buffer.strip():
                    conditions.append(buffer.strip())
                connectors.append(match.group(1).upper())
                buffer = ""
                index = match.end()
                continue
        buffer += char
        index += 1

    if buffer.strip():
        conditions.append(buffer.strip())
    return conditions, connectors


def parse_value(raw: str) -> Optional[str]:
    value = raw.strip()
    if not value:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_list(raw: str) -> Tuple[List[str], Optional[str]]:
    value = raw.strip()
    if not (value.startswith("(") and value.endswith(")")):
        return [], "List value must be enclosed in parentheses"

    items, buffer, quote = [], "", None
    for char in value[1:-1]:
        if char in ("'", '"'):
            if quote == char:
                quote = None
            elif quote is None:
                quote = char
        if char == "," and quote is None:
            items.append(buffer)
            buffer = ""
            continue
        buffer += char
    items.append(buffer)

    parsed = [parse_value(item) for item in items]
    if any(item is None for item in parsed):
        return [], "Empty value inside list"
    return parsed, None


# ==================== FIELD BUILDERS ====================

ClauseBuilder = Callable[[str, str, str], Tuple[Optional[object], Optional[str]]]


def numeric_field(column) -> ClauseBuilder:
    def build(name: str, op: str, raw: str):
        if op not in COMPARISON_OPS:
            return None, f"Operator {op} is not supported for {name}"
        value = parse_value(raw)
        try:
            number = Decimal(value)
        except (InvalidOperation, TypeError):
            return None, f"{name} expects a numeric value"
        return {
            "=": column == number,
            "!=": column != number,
            ">": column > number,
            ">=": column >= number,
            "<": column < number,
            "<=": column <= number,
        }[op], None
    return build


def date_field(column) -> ClauseBuilder:
    """Dates compare by whole day against a datetime column"""
    def build(name: str, op: str, raw: str):
        if op not in COMPARISON_OPS:
            return None, f"Operator {op} is not supported for {name}"
        value = parse_value(raw)
        try:
            day = date.fromisoformat(value)
        except (ValueError, TypeError):
            return None, f"Invalid date: {raw.strip()}"
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)
        return {
            "=": and_(column >= start, column < end),
            "!=": or_(column < start, column >= end),
            ">": column >= end,
            ">=": column >= start,
            "<": column < start,
            "<=": column < end,
        }[op], None
    return build


def enum_field(column, allowed: Sequence[str]) -> ClauseBuilder:
    def build(name: str, op: str, raw: str):
        if op in LIST_OPS:
            values, error = parse_list(raw)
            if error:
                return None, error
        elif op in ("=", "!="):
            value = parse_value(raw)
            values = [value] if value is not None else []
        else:
            return None, f"Operator {op} is not supported for {name}"

        values = [value.upper() for value in values]
        unknown = [value for value in values if value not in allowed]
        if not values or unknown:
            return None, f"{name} expects one of {', '.join(allowed)}"

        if op == "=":
            return column == values[0], None
        if op == "!=":
            return column != values[0], None
        if op == "IN":
            return column.in_(values), None
        return column.notin_(values), None
    return build


def unit_code_field(relationship) -> ClauseBuilder:
    def build(name: str, op: str, raw: str):
        if op not in ("=", "!="):
            return None, f"Operator {op} is not supported for {name}"
        value = parse_value(raw)
        clause = relationship.has(func.lower(OperationalUnit.code) == value.lower())
        return (clause if op == "=" else not_(clause)), None
    return build


UNIT_EXPENSE_FIELDS: Dict[str, ClauseBuilder] = {
    "amount": numeric_field(UnitExpense.amount),
    "date": date_field(UnitExpense.date),
    "sourcetype": enum_field(UnitExpense.source_type, [t.value for t in ExpenseSourceType]),
    "unitcode": unit_code_field(UnitExpense.unit),
}

STAFF_ADVANCE_FIELDS: Dict[str, ClauseBuilder] = {
    "amount": numeric_field(StaffAdvance.amount),
    "date": date_field(StaffAdvance.date),
    "status": enum_field(StaffAdvance.status, [s.value for s in AdvanceStatus]),
}

ACCOUNTING_NOTE_FIELDS: Dict[str, ClauseBuilder] = {
    "amount": numeric_field(AccountingNote.amount),
    "date": date_field(AccountingNote.created_at),
    "status": enum_field(AccountingNote.status, [s.value for s in NoteStatus]),
    "sourcetype": enum_field(AccountingNote.source_type, [s.value for s in FundingSource]),
}


def parse_filter_dsl(text: Optional[str], fields: Dict[str, ClauseBuilder], entity: str = "") -> FilterParseResult:
    """Parse a DSL expression into SQLAlchemy clauses, collecting every error"""
    if not text or not text.strip():
        return FilterParseResult()

    conditions, connectors = split_conditions(text.strip())
    result = FilterParseResult()

    if "OR" in connectors:
        result.errors.append("OR operator is not supported yet")

    for condition in conditions:
        match = CONDITION_RE.match(condition)
        if not match:
            result.errors.append(f"Unable to parse condition: {condition}")
            continue

        name = match.group(1)
        op = re.sub(r"\s+", " ", match.group(2)).upper()
        raw = match.group(3)
        builder = fields.get(name.lower().replace("_", "").replace(".", ""))
        if builder is None:
            suffix = f" {entity}" if entity else ""
            result.errors.append(f"Field {name} is not supported in{suffix} DSL filters")
            continue

        if parse_value(raw) is None:
            result.errors.append(f"Missing value for {name}")
            continue

        clause, error = builder(name, op, raw)
        if error:
            result.errors.append(error)
        else:
            result.clauses.append(clause)

    return result
