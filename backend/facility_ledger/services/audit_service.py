"""
Audit Logging Service
Records every accountant webhook call in the webhook log
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any
from fastapi.encoders import jsonable_encoder
import json
import logging

from facility_ledger.models import WebhookLog

logger = logging.getLogger(__name__)


class WebhookEvent:
    """Constants for webhook audit events"""
    ACCOUNTANT_ACTION_SUCCESS = "ACCOUNTANT_ACTION_SUCCESS"
    ACCOUNTANT_ACTION_FAILED = "ACCOUNTANT_ACTION_FAILED"
    ACCOUNTANT_ACTION_INVALID = "ACCOUNTANT_ACTION_INVALID"
    ACCOUNTANT_ACTION_UNSUPPORTED = "ACCOUNTANT_ACTION_UNSUPPORTED"
    ACCOUNTANT_ACTION_UNAUTHORIZED = "ACCOUNTANT_ACTION_UNAUTHORIZED"
    ACCOUNTANT_ACTION_FORBIDDEN = "ACCOUNTANT_ACTION_FORBIDDEN"


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(jsonable_encoder(value), ensure_ascii=False, default=str)


class AuditService:
    """Service for recording and retrieving webhook audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        event_type: str,
        endpoint: str,
        status_code: int,
        api_key_id: Optional[int] = None,
        action: Optional[str] = None,
        request_body: Optional[Any] = None,
        response_body: Optional[Dict] = None,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        method: str = "POST"
    ) -> Optional[WebhookLog]:
        """
        Write one webhook log entry and commit it.

        Runs after the action's own transaction has been committed or rolled
        back, so the entry is kept even when the action failed.

        Returns:
            The created WebhookLog, or None when it could not be written
        """
        try:
            entry = WebhookLog(
                api_key_id=api_key_id,
                event_type=event_type,
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                action=action,
                request_body=_to_json(request_body),
                response_body=_to_json(response_body),
                error_message=error_message,
                ip_address=ip_address
            )

            self.db.add(entry)
            self.db.commit()

            logger.info(
                f"Audit: {event_type} action={action} status={status_code} key={api_key_id}"
            )

            return entry

        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to write webhook log: {e}")
            # Don't raise - audit logging should not break the main operation
            return None
