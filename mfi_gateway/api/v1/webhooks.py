"""POST /v1/webhooks/gateway - asynchronous status callbacks from the payment gateway"""

import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import JSONResponse

from mfi_gateway.api.dependencies import get_request_id, get_webhook_processor
from mfi_gateway.api.v1.schemas import WebhookAck
from mfi_gateway.services.webhooks import RejectReason, Rejected, WebhookProcessor

router = APIRouter()


@router.post("/webhooks/gateway", response_model=WebhookAck)
async def receive_gateway_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_gateway_signature: Optional[str] = Header(None),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Reconcile a gateway callback into the ledger.

    Responses:
    - 401 when the signature does not verify
    - 200 with success=false for malformed or unknown events (the gateway
      should not retry those)
    - 500 when the ledger write fails, so the gateway retries
    Side effects run after the response has been sent.
    """
    request_id = get_request_id(request)
    raw_body = await request.body()

    try:
        result = await processor.handle(raw_body, x_gateway_signature, defer=background_tasks.add_task)
    except Exception as e:
        logging.error(f"Webhook processing failed: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=500, content={"success": False, "reason": "internal_error"})

    if isinstance(result, Rejected):
        status_code = 401 if result.reason is RejectReason.INVALID_SIGNATURE else 200
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "reason": result.reason.value},
        )

    return WebhookAck(
        success=True,
        duplicate=result.duplicate,
        reference=result.transaction.reference,
        status=result.transaction.status,
    )
