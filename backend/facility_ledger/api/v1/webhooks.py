"""
Webhook API Routes - Accountant actions from the WhatsApp automation layer
"""
from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from facility_ledger.core.database import get_db
from facility_ledger.core.security import API_KEY_HEADER
from facility_ledger.services.action_dispatcher import ActionDispatcher

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/accountants")
async def accountant_action(
    request: Request,
    db: Session = Depends(get_db)
):
    """Run one accountant action; the body is {action, senderPhone, payload}"""
    raw_body = await request.body()

    dispatcher = ActionDispatcher(db)
    status_code, body = dispatcher.dispatch(
        raw_body,
        api_key_value=request.headers.get(API_KEY_HEADER),
        ip_address=get_client_ip(request)
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
