"""
Staff Resolution Service - rank staff members against a free-text reference
"""
from dataclasses import dataclass, field
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from facility_ledger.core.config import settings
from facility_ledger.core.exceptions import AmbiguousMatchError, NotFoundError
from facility_ledger.models import (
    Staff, StaffAdvance, StaffProjectAssignment, OperationalUnit, AdvanceStatus
)
from facility_ledger.services.text_normalizer import normalize_text, tokenize

logger = logging.getLogger(__name__)

# Per-token weights
EXACT_WEIGHT = 1.0
PREFIX_WEIGHT = 0.85
SUBSTRING_WEIGHT = 0.6
FUZZY_WEIGHT = 0.7
FUZZY_MIN_RATIO = 0.75

# Blend of the mean token score and the share of the candidate's name that was matched
MEAN_WEIGHT = 0.8
COVERAGE_WEIGHT = 0.2

# Only a normalized full-name equality reaches FULL_NAME_SCORE
FULL_NAME_SCORE = 1.0
PARTIAL_NAME_CAP = 0.99


def score_token(query_token: str, name_token: str) -> Tuple[float, str]:
    """Score one query token against one name token"""
    if query_token == name_token:
        return EXACT_WEIGHT, "exact"
    if name_token.startswith(query_token):
        return PREFIX_WEIGHT, "prefix"
    if query_token in name_token:
        return SUBSTRING_WEIGHT, "substring"
    ratio = SequenceMatcher(None, query_token, name_token).ratio()
    if ratio >= FUZZY_MIN_RATIO:
        return FUZZY_WEIGHT * ratio, "fuzzy"
    return 0.0, "none"


def score_name(query_tokens: List[str], name: str) -> Tuple[float, List[Dict[str, Any]]]:
    """
    Score a staff name against the query tokens.

    Each query token takes its best score over the name tokens. The result is
    0.8 * mean(token scores) + 0.2 * coverage, where coverage is the share of
    name tokens hit by at least one query token. A normalized full-name
    equality scores 1.0; every other name is capped at 0.99.
    """
    name_tokens = tokenize(name)
    if not query_tokens or not name_tokens:
        return 0.0, []

    breakdown = []
    matched_name_tokens = set()
    total = 0.0

    for query_token in query_tokens:
        best_score, best_kind, best_token = 0.0, "none", None
        for name_token in name_tokens:
            token_score, kind = score_token(query_token, name_token)
            if token_score > best_score:
                best_score, best_kind, best_token = token_score, kind, name_token
        if best_token is not None:
            matched_name_tokens.add(best_token)
        total += best_score
        breakdown.append({
            "token": query_token,
            "matchedToken": best_token,
            "kind": best_kind,
            "score": round(best_score, 4),
        })

    if " ".join(query_tokens) == " ".join(name_tokens):
        return FULL_NAME_SCORE, breakdown

    mean = total / len(query_tokens)
    coverage = len(matched_name_tokens) / len(name_tokens)
    score = MEAN_WEIGHT * mean + COVERAGE_WEIGHT * coverage
    return round(min(score, PARTIAL_NAME_CAP), 4), breakdown


@dataclass
class StaffMatch:
    staff: Staff
    score: float
    breakdown: List[Dict[str, Any]] = field(default_factory=list)
    pending_advance_ids: List[int] = field(default_factory=list)
    pending_advance_amount: Decimal = Decimal("0")

    @property
    def project(self):
        if self.staff.unit is not None:
            return self.staff.unit.project
        if self.staff.project_assignments:
            return self.staff.project_assignments[0].project
        return None

    def to_dict(self) -> Dict[str, Any]:
        project = self.project
        return {
            "id": self.staff.id,
            "name": self.staff.name,
            "unitCode": self.staff.unit.code if self.staff.unit else None,
            "projectId": project.id if project else None,
            "projectName": project.name if project else None,
            "score": self.score,
            "pendingAdvanceCount": len(self.pending_advance_ids),
            "pendingAdvanceAmount": self.pending_advance_amount,
            "pendingAdvanceIds": list(self.pending_advance_ids),
            "tokens": tokenize(self.staff.name),
            "matchBreakdown": self.breakdown,
        }


@dataclass
class StaffResolution:
    query: Optional[str]
    normalized_query: str
    tokens: List[str]
    matches: List[StaffMatch]
    chosen: Optional[StaffMatch]
    resolved_by: Optional[str] = None

    @property
    def ambiguous(self) -> bool:
        return self.chosen is None and len(self.matches) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "normalizedQuery": self.normalized_query,
            "tokens": self.tokens,
            "matches": [match.to_dict() for match in self.matches],
            "chosenStaff": self.chosen.to_dict() if self.chosen else None,
            "resolvedBy": self.resolved_by,
            "ambiguous": self.ambiguous,
        }

    def suggestion(self) -> Dict[str, Any]:
        """Ask the caller to pick one of the candidates"""
        label = self.query or ""
        return {
            "title": "Choose the staff member",
            "prompt": f'Several staff members match "{label}". Reply with the staff id to use.',
            "data": {
                "options": [
                    {
                        "staffId": match.staff.id,
                        "name": match.staff.name,
                        "unitCode": match.staff.unit.code if match.staff.unit else None,
                        "score": match.score,
                        "pendingAdvanceCount": len(match.pending_advance_ids),
                    }
                    for match in self.matches
                ]
            },
        }


def choose(matches: List[StaffMatch], confidence: float, margin: float) -> Optional[StaffMatch]:
    """
    A unique full-name equality wins outright. Otherwise the top match wins
    only when it is confident and clearly ahead.
    """
    if not matches:
        return None
    exact = [match for match in matches if match.score >= FULL_NAME_SCORE]
    if len(exact) == 1:
        return exact[0]
    top = matches[0]
    if top.score < confidence:
        return None
    if len(matches) > 1 and top.score - matches[1].score < margin:
        return None
    return top


class StaffResolutionService:
    def __init__(self, db: Session):
        self.db = db

    def _base_query(self, project_id: Optional[int], only_with_pending_advances: bool):
        query = self.db.query(Staff).options(
            joinedload(Staff.unit).joinedload(OperationalUnit.project),
            joinedload(Staff.project_assignments).joinedload(StaffProjectAssignment.project)
        ).filter(Staff.is_active == True)

        if project_id is not None:
            query = query.filter(or_(
                Staff.unit.has(OperationalUnit.project_id == project_id),
                Staff.project_assignments.any(StaffProjectAssignment.project_id == project_id)
            ))

        if only_with_pending_advances:
            query = query.filter(Staff.advances.any(StaffAdvance.status == AdvanceStatus.PENDING.value))

        return query

    def _pending_advances(self, staff_ids: List[int]) -> Dict[int, Tuple[List[int], Decimal]]:
        summary: Dict[int, Tuple[List[int], Decimal]] = {}
        if not staff_ids:
            return summary

        rows = self.db.query(StaffAdvance.id, StaffAdvance.staff_id, StaffAdvance.amount).filter(
            StaffAdvance.staff_id.in_(staff_ids),
            StaffAdvance.status == AdvanceStatus.PENDING.value
        ).order_by(StaffAdvance.id).all()

        for advance_id, staff_id, amount in rows:
            ids, total = summary.get(staff_id, ([], Decimal("0")))
            ids.append(advance_id)
            summary[staff_id] = (ids, total + Decimal(amount))
        return summary

    def _with_pending(self, matches: List[StaffMatch]) -> List[StaffMatch]:
        pending = self._pending_advances([match.staff.id for match in matches])
        for match in matches:
            ids, total = pending.get(match.staff.id, ([], Decimal("0")))
            match.pending_advance_ids = ids
            match.pending_advance_amount = total
        return matches

    def resolve(
        self,
        staff_id: Optional[int] = None,
        staff_query: Optional[str] = None,
        project_id: Optional[int] = None,
        only_with_pending_advances: bool = False,
        limit: Optional[int] = None
    ) -> StaffResolution:
        """
        Rank staff candidates for an id and/or a free-text name.

        A direct id that passes the filters wins outright. Otherwise every
        active staff member in scope is scored against the query. Never
        raises when nothing matches.
        """
        limit = min(limit or settings.STAFF_MATCH_LIMIT, settings.LIST_MAX_LIMIT)
        tokens = tokenize(staff_query)
        normalized_query = normalize_text(staff_query)
        base_query = self._base_query(project_id, only_with_pending_advances)

        if staff_id is not None:
            staff = base_query.filter(Staff.id == staff_id).first()
            if staff is not None:
                match = self._with_pending([StaffMatch(staff=staff, score=1.0)])[0]
                return StaffResolution(
                    query=staff_query,
                    normalized_query=normalized_query,
                    tokens=tokens,
                    matches=[match],
                    chosen=match,
                    resolved_by="id"
                )
            logger.info(f"Staff id {staff_id} not found in scope, falling back to query")

        if not tokens:
            return StaffResolution(staff_query, normalized_query, tokens, [], None)

        scored = []
        for staff in base_query.all():
            score, breakdown = score_name(tokens, staff.name)
            if score >= settings.STAFF_MATCH_MIN_SCORE:
                scored.append(StaffMatch(staff=staff, score=score, breakdown=breakdown))

        scored.sort(key=lambda match: (-match.score, normalize_text(match.staff.name), match.staff.id))
        chosen = choose(scored, settings.STAFF_MATCH_CONFIDENCE, settings.STAFF_MATCH_MARGIN)
        matches = self._with_pending(scored[:limit])

        return StaffResolution(
            query=staff_query,
            normalized_query=normalized_query,
            tokens=tokens,
            matches=matches,
            chosen=chosen,
            resolved_by="query" if chosen else None
        )

    def resolve_one(
        self,
        staff_id: Optional[int] = None,
        staff_query: Optional[str] = None,
        project_id: Optional[int] = None,
        only_with_pending_advances: bool = False
    ) -> StaffMatch:
        """Resolve to exactly one staff member or raise"""
        resolution = self.resolve(
            staff_id=staff_id,
            staff_query=staff_query,
            project_id=project_id,
            only_with_pending_advances=only_with_pending_advances
        )

        if resolution.chosen is not None:
            return resolution.chosen

        if not resolution.matches:
            raise NotFoundError(
                "Staff not found",
                en="I could not find a staff member with that identifier.",
                ar="لم أعثر على موظف بهذا المعرف.",
                issues={"staffId": staff_id, "staffQuery": staff_query}
            )

        raise AmbiguousMatchError(
            "Staff reference is ambiguous",
            en="More than one staff member matches that name. Please choose one.",
            ar="يوجد أكثر من موظف يطابق هذا الاسم. من فضلك اختر واحداً.",
            issues={"candidates": [match.to_dict() for match in resolution.matches]},
            suggestions=[resolution.suggestion()]
        )
