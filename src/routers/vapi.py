"""
VAPI Webhook Router - Handle VAPI voice call events.

VAPI posts server messages (status-update, conversation-update,
end-of-call-report, ...) for every call our businesses receive. Each one is
merged into the call record; the end-of-call report also produces the
de-identified training record.

VAPI retries on non-2xx responses, so only a request that can never succeed
(no call id, wrong secret) gets an error status. Processing failures answer
200 with success=false.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from src.config import VAPI_WEBHOOK_SECRET
from src.dependencies import get_webhook_service
from src.exceptions import CoyaException, UnauthorizedError
from src.services.vapi_webhook_service import VapiWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["VAPI Webhooks"])


def verify_vapi_signature(x_vapi_secret: Optional[str] = None) -> bool:
    """
    Verify VAPI webhook request using X-Vapi-Secret header.

    VAPI sends the configured secret in the X-Vapi-Secret header.
    """
    if not VAPI_WEBHOOK_SECRET:
        return True

    if not x_vapi_secret:
        logger.warning("No X-Vapi-Secret header provided")
        return False

    if x_vapi_secret != VAPI_WEBHOOK_SECRET:
        logger.warning("X-Vapi-Secret mismatch")
        return False

    return True


@router.post("/webhook")
@router.post("/vapi/webhook")
async def vapi_webhook(
    request: Request,
    x_vapi_secret: Optional[str] = Header(None, alias="X-Vapi-Secret"),
    service: VapiWebhookService = Depends(get_webhook_service),
):
    """
    Handle VAPI webhook events.

    Body is either {"message": {...}} or the bare message.
    """
    if not verify_vapi_signature(x_vapi_secret):
        raise UnauthorizedError("Invalid signature")

    try:
        payload = json.loads(await request.body())
        if not isinstance(payload, dict):
            payload = {}
        response = await service.handle(payload)
        return response.model_dump(exclude_none=True)
    except CoyaException:
        raise
    except Exception as e:
        logger.error(f"VAPI webhook processing failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@router.get("/webhook")
@router.get("/vapi/webhook")
async def vapi_webhook_status():
    """Liveness check for the VAPI dashboard."""
    return {"status": "ok", "service": "vapi-webhook"}
