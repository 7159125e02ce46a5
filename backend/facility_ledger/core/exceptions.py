"""
Ledger exceptions

Services raise these; the action dispatcher turns them into the
bilingual webhook response.
"""
from typing import Any, Dict, List, Optional


class LedgerError(ValueError):
    """Base error for anything the caller can act on"""

    status_code = 400

    def __init__(
        self,
        error: str,
        en: str,
        ar: str,
        issues: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(error)
        self.error = error
        self.en = en
        self.ar = ar
        self.issues = issues
        self.suggestions = suggestions


class InvalidPayloadError(LedgerError):
    """Payload is missing fields or has out-of-range values"""
    status_code = 400


class BusinessRuleError(LedgerError):
    """Overpay, over-draw, illegal transition, duplicate payroll month"""
    status_code = 400


class NotFoundError(LedgerError):
    status_code = 404


class AmbiguousMatchError(LedgerError):
    """A textual reference matched more than one record"""
    status_code = 409


class ConflictError(LedgerError):
    """The record was already processed by another request"""
    status_code = 409
