"""
Payments API Endpoints
"""
from fastapi import APIRouter, Depends

from salescaller.api.v1.dependencies import get_payment_service
from salescaller.domain.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/{payment_id}")
async def get_payment(payment_id: str, payments: PaymentService = Depends(get_payment_service)):
    return await payments.get_payment(payment_id)


@router.post("/{payment_id}/verify")
async def verify_payment(payment_id: str, payments: PaymentService = Depends(get_payment_service)):
    """
    Ask the provider whether a pending payment went through.

    Used when a webhook never arrived; a paid result is applied exactly
    as the webhook would have applied it.
    """
    return await payments.verify_payment(payment_id)
