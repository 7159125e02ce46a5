"""
Accountant Action Dispatcher

Authenticates the caller, validates the envelope and the action payload,
resolves the accountant by WhatsApp number, runs the handler inside one
transaction and writes the audit entry.
"""
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from facility_ledger.core.exceptions import LedgerError
from facility_ledger.core.security import ACCOUNTANT_ROLES, ApiKeyVerifier, resolve_accountant
from facility_ledger.schemas import ACTION_PAYLOADS, AccountantAction, ActionResult, WebhookEnvelope
from facility_ledger.services.action_handlers import HANDLERS
from facility_ledger.services.audit_service import AuditService, WebhookEvent

logger = logging.getLogger(__name__)

ACCOUNTANT_WEBHOOK_ENDPOINT = "/api/v1/webhooks/accountants"


def _failure(status_code: int, error: str, en: str, ar: str,
             issues: Optional[Dict[str, Any]] = None,
             suggestions: Optional[List[Dict[str, Any]]] = None) -> ActionResult:
    return ActionResult(
        success=False,
        status_code=status_code,
        error=error,
        message=error,
        human_readable={"en": en, "ar": ar},
        issues=issues,
        suggestions=suggestions
    )


def validation_issues(exc: ValidationError) -> Dict[str, Any]:
    """Field errors without the raw input or exception objects"""
    return {
        "fields": [
            {
                "field": ".".join(str(part) for part in error["loc"]) or "payload",
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
    }


class ActionDispatcher:
    """Runs one accountant webhook call end to end"""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def dispatch(
        self,
        raw_body: bytes,
        api_key_value: Optional[str],
        ip_address: Optional[str] = None
    ) -> Tuple[int, Dict[str, Any]]:
        """
        Returns:
            (HTTP status code, response body)
        """
        api_key = ApiKeyVerifier(self.db).verify(api_key_value)
        if api_key is None:
            result = _failure(
                401,
                "Invalid or missing API key",
                en="The request is not authorized.",
                ar="الطلب غير مصرح به."
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_UNAUTHORIZED, result, None, None,
                                _decode_for_audit(raw_body), ip_address)

        api_key_id = api_key.id

        if not ApiKeyVerifier.has_role(api_key, ACCOUNTANT_ROLES):
            result = _failure(
                403,
                "API key is not allowed to run accountant actions",
                en="This API key cannot run accountant actions.",
                ar="مفتاح الواجهة هذا لا يملك صلاحية تنفيذ عمليات المحاسب.",
                issues={"role": api_key.role}
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_FORBIDDEN, result, api_key_id, None,
                                _decode_for_audit(raw_body), ip_address)

        try:
            body = json.loads(raw_body or b"")
        except ValueError:
            result = _failure(
                400,
                "Request body is not valid JSON",
                en="The request body must be valid JSON.",
                ar="يجب أن يكون محتوى الطلب بصيغة JSON صحيحة."
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_INVALID, result, api_key_id, None,
                                _decode_for_audit(raw_body), ip_address)

        try:
            envelope = WebhookEnvelope.model_validate(body)
        except ValidationError as e:
            result = _failure(
                400,
                "Invalid accountant webhook payload",
                en="Send action, senderPhone and payload.",
                ar="أرسل action و senderPhone و payload.",
                issues=validation_issues(e)
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_INVALID, result, api_key_id,
                                body.get("action") if isinstance(body, dict) else None, body, ip_address)

        try:
            action = AccountantAction(envelope.action)
        except ValueError:
            result = _failure(
                400,
                "Unsupported accountant action",
                en="This action is not supported.",
                ar="هذا الإجراء غير مدعوم.",
                issues={"action": envelope.action, "supported": [a.value for a in AccountantAction]}
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_UNSUPPORTED, result, api_key_id,
                                envelope.action, body, ip_address)

        accountant = resolve_accountant(self.db, envelope.sender_phone)
        if accountant is None:
            result = _failure(
                404,
                "Accountant not found",
                en="The WhatsApp number is not linked to an accountant user.",
                ar="رقم الواتساب غير مرتبط بحساب محاسب.",
                issues={"senderPhone": envelope.sender_phone}
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_UNAUTHORIZED, result, api_key_id,
                                action.value, body, ip_address)

        payload_model = ACTION_PAYLOADS[action]
        try:
            payload = payload_model.model_validate(envelope.payload)
        except ValidationError as e:
            hint = payload_model.invalid_message
            result = _failure(
                400,
                "Invalid payload",
                en=hint["en"],
                ar=hint["ar"],
                issues=validation_issues(e)
            )
            return self._finish(WebhookEvent.ACCOUNTANT_ACTION_INVALID, result, api_key_id,
                                action.value, body, ip_address)

        try:
            result = HANDLERS[action](self.db, accountant, payload)
            self.db.commit()
            event_type = WebhookEvent.ACCOUNTANT_ACTION_SUCCESS
        except LedgerError as e:
            self.db.rollback()
            logger.warning(f"Accountant action {action.value} failed: {e.error}")
            result = _failure(e.status_code, e.error, e.en, e.ar, e.issues, e.suggestions)
            event_type = WebhookEvent.ACCOUNTANT_ACTION_FAILED
        except Exception as e:
            self.db.rollback()
            logger.error(f"Unexpected error while running {action.value}: {e}", exc_info=True)
            result = _failure(
                500,
                "Failed to process accountant action",
                en="Something went wrong while processing the accountant action.",
                ar="حدث خطأ أثناء تنفيذ طلب المحاسب."
            )
            event_type = WebhookEvent.ACCOUNTANT_ACTION_FAILED

        return self._finish(event_type, result, api_key_id, action.value, body, ip_address)

    def _finish(
        self,
        event_type: str,
        result: ActionResult,
        api_key_id: Optional[int],
        action: Optional[str],
        request_body: Any,
        ip_address: Optional[str]
    ) -> Tuple[int, Dict[str, Any]]:
        body = result.to_body()
        logger.info(f"Accountant webhook {event_type} action={action} status={result.status_code}")

        self.audit.log(
            event_type=event_type,
            endpoint=ACCOUNTANT_WEBHOOK_ENDPOINT,
            status_code=result.status_code,
            api_key_id=api_key_id,
            action=action,
            request_body=request_body,
            response_body=body,
            error_message=None if result.success else result.error,
            ip_address=ip_address
        )
        return result.status_code, body


def _decode_for_audit(raw_body: bytes) -> Optional[str]:
    if not raw_body:
        return None
    return raw_body.decode("utf-8", errors="replace")
