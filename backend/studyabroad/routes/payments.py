"""Checkout endpoints for Stripe and Razorpay, gateway webhooks and admin reporting."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_admin
from ..database import get_session
from ..schemas import ConfirmIn, PurchaseIn, RefundIn, VerifyIn
from ..services.cms import SettingsService
from ..services.payments import PaymentService
from ..utils.gateways import recommended_gateway

router = APIRouter(tags=["payments"])


@router.get("/payments/config")
def payment_config(currency: Optional[str] = None, country: Optional[str] = None,
                   db: Session = Depends(get_session)):
    """Enabled gateways, their public keys and the suggested one for the buyer."""
    cfg = SettingsService(db).payment_settings()
    return {
        "stripe": {"enabled": cfg["stripe_enabled"],
                   "publishable_key": cfg["stripe_publishable_key"] if cfg["stripe_enabled"] else None},
        "razorpay": {"enabled": cfg["razorpay_enabled"],
                     "key_id": cfg["razorpay_key_id"] if cfg["razorpay_enabled"] else None},
        "default_currency": cfg["default_currency"],
        "recommended_gateway": recommended_gateway(currency or cfg["default_currency"], country),
    }


@router.post("/payments/create-intent", status_code=201)
def create_intent(payload: PurchaseIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    return PaymentService(db).create_intent(user, payload.model_dump())


@router.post("/payments/confirm")
def confirm_intent(payload: ConfirmIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return PaymentService(db).confirm_intent(user, payload.payment_intent_id)


@router.post("/payments/create-order", status_code=201)
def create_order(payload: PurchaseIn, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    return PaymentService(db).create_order(user, payload.model_dump())


@router.post("/payments/verify")
def verify_payment(payload: VerifyIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return PaymentService(db).verify_order(user, payload.razorpay_order_id, payload.razorpay_payment_id,
                                           payload.razorpay_signature)


@router.post("/payments/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                         db: Session = Depends(get_session)):
    """Signed Stripe events; the raw body is needed for signature checks."""
    body = await request.body()
    return await run_in_threadpool(PaymentService(db).handle_stripe_webhook, body, stripe_signature)


@router.post("/payments/webhooks/razorpay")
async def razorpay_webhook(request: Request, x_razorpay_signature: Optional[str] = Header(None),
                           db: Session = Depends(get_session)):
    body = await request.body()
    return await run_in_threadpool(PaymentService(db).handle_razorpay_webhook, body, x_razorpay_signature)


@router.get("/payments/transactions")
def my_transactions(status: Optional[models.TransactionStatus] = None, page: int = Query(1, ge=1),
                    limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return PaymentService(db).list_for_user(user, page, limit, status)


# -- admin ----------------------------------------------------------------

@router.get("/admin/payments/transactions")
def admin_transactions(status: Optional[models.TransactionStatus] = None,
                       type: Optional[models.TransactionType] = None,
                       gateway: Optional[models.PaymentGateway] = None, user_id: Optional[int] = None,
                       page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                       db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return PaymentService(db).list_all(page, limit, user_id=user_id, status=status, tx_type=type, gateway=gateway)


@router.post("/admin/payments/transactions/{transaction_id}/refund")
def admin_refund(transaction_id: int, payload: Optional[RefundIn] = None, db: Session = Depends(get_session),
                 admin: models.User = Depends(require_admin)):
    return PaymentService(db).refund(transaction_id, payload.reason if payload else None)


@router.get("/admin/payments/stats")
def admin_payment_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return PaymentService(db).stats()
