"""Payment processor callbacks."""

from fastapi import APIRouter, Depends, Header, HTTPException, status
from typing import Optional
from pydantic import BaseModel
from uuid import UUID
import hmac

from config import settings_conf
from api.services import Services, get_services

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"]
)

class PaymentNotification(BaseModel):
    """Notification sent by the payment processor."""
    transaction_id: UUID
    status: str  # succeeded or failed
    payment_reference: Optional[str] = None

class PaymentAck(BaseModel):
    transaction_id: UUID
    status: str
    escrow_status: str

def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """Reject callbacks that don't carry the shared webhook secret."""
    expected = settings_conf['webhook_secret']
    if not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret"
        )

@router.post(
    "/payments",
    response_model=PaymentAck,
    dependencies=[Depends(verify_webhook_secret)]
)
async def payment_webhook(
    notification: PaymentNotification,
    services: Services = Depends(get_services)
):
    """Move a pending purchase to paid once the processor captured the funds.

    Failed payments leave the transaction pending so the buyer can retry or
    cancel.
    """
    if notification.status == 'succeeded':
        txn = await services.transactions.mark_paid(
            notification.transaction_id, payment_reference=notification.payment_reference
        )
    elif notification.status == 'failed':
        txn = await services.transactions.record_payment_failure(
            notification.transaction_id, payment_reference=notification.payment_reference
        )
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown payment status: {notification.status}"
        )
    return PaymentAck(
        transaction_id=txn['id'],
        status=txn['status'],
        escrow_status=txn['escrow_status']
    )
