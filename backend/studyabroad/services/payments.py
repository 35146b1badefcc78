"""Payments through Stripe (payment intents) and Razorpay (orders).

Every purchase starts as a PENDING `Transaction`. Completion happens
through client confirmation (`confirm` / `verify`) or a gateway webhook;
`complete` only moves PENDING or PROCESSING transactions forward, so the
two paths can race safely and a refunded or cancelled transaction stays closed.
"""

import json
import logging
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..database import utcnow
from ..errors import BadRequestError, ForbiddenError, GatewayError, NotFoundError
from ..serializers import transaction_out
from ..utils import gateways
from ..utils.mailer import EmailType, send_email
from ..utils.pagination import pagination_block
from .cms import SettingsService
from .courses import CourseService
from .notifications import NotificationService
from .test_prep import is_paid

logger = logging.getLogger("studyabroad.payments")

AMOUNT_TOLERANCE = 0.01

PAYABLE = (models.TransactionStatus.PENDING, models.TransactionStatus.PROCESSING)


class PaymentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    # -- purchase targets -------------------------------------------------

    def resolve_target(self, user: models.User, payload: dict) -> dict:
        """Validate the purchase target and return price, currency and link ids."""
        tx_type = payload["type"]
        if tx_type == models.TransactionType.COURSE_PURCHASE:
            course = self.session.get(models.Course, payload["course_id"])
            if not course or not course.is_published:
                raise NotFoundError("Course not found")
            if CourseService(self.session).active_enrollment(user, course.id):
                raise BadRequestError("Already enrolled in this course")
            if not course.price or course.price <= 0:
                raise BadRequestError("This course is free; enroll directly")
            return {"amount": course.price, "currency": course.currency, "course_id": course.id,
                    "description": f"Course: {course.title}"}
        if tx_type == models.TransactionType.APPOINTMENT_BOOKING:
            appointment = self.session.get(models.Appointment, payload["appointment_id"])
            if not appointment:
                raise NotFoundError("Appointment not found")
            if appointment.user_id != user.id:
                raise ForbiddenError()
            if appointment.status == models.AppointmentStatus.CANCELLED:
                raise BadRequestError("Appointment is cancelled")
            appointment_type = self.session.get(models.AppointmentType, appointment.type_id)
            if not appointment_type or not appointment_type.price or appointment_type.price <= 0:
                raise BadRequestError("This appointment does not require payment")
            if self.repo.completed_for(user.id, tx_type, appointment_id=appointment.id):
                raise BadRequestError("Appointment is already paid")
            return {"amount": appointment_type.price, "currency": appointment_type.currency,
                    "appointment_id": appointment.id, "description": f"Consultation: {appointment.title}"}
        test = self.session.get(models.Test, payload["test_id"])
        if not test or not test.is_published:
            raise NotFoundError("Test not found")
        if not is_paid(test):
            raise BadRequestError("This test is free")
        if self.repo.completed_for(user.id, tx_type, test_id=test.id):
            raise BadRequestError("Test is already purchased")
        return {"amount": test.price, "currency": test.currency, "test_id": test.id,
                "description": f"Test: {test.title}"}

    def _checked_target(self, user: models.User, payload: dict) -> dict:
        target = self.resolve_target(user, payload)
        if payload.get("currency") and payload["currency"].upper() != target["currency"].upper():
            raise BadRequestError(f"Currency mismatch; expected {target['currency']}")
        amount = payload.get("amount")
        if amount is not None and abs(amount - target["amount"]) > AMOUNT_TOLERANCE:
            raise BadRequestError("Amount does not match the price", extra={"expected_amount": target["amount"]})
        minimum = gateways.below_minimum(target["amount"], target["currency"])
        if minimum is not None:
            raise BadRequestError(f"Minimum amount for {target['currency']} is {minimum:.2f}")
        return target

    def _pending(self, user: models.User, payload: dict, target: dict,
                 gateway: models.PaymentGateway) -> models.Transaction:
        return self.repo.save(models.Transaction(
            user_id=user.id,
            amount=target["amount"],
            currency=target["currency"].upper(),
            type=payload["type"],
            description=target["description"],
            gateway=gateway,
            course_id=target.get("course_id"),
            appointment_id=target.get("appointment_id"),
            test_id=target.get("test_id"),
        ))

    def _fail(self, tx: models.Transaction, reason: str) -> None:
        tx.status = models.TransactionStatus.FAILED
        tx.failure_reason = reason
        tx.updated_at = utcnow()
        self.repo.save(tx)

    # -- Stripe -----------------------------------------------------------

    def create_intent(self, user: models.User, payload: dict) -> dict:
        cfg = SettingsService(self.session).payment_settings()
        if not cfg["stripe_enabled"]:
            raise GatewayError("Stripe payments are not configured")
        target = self._checked_target(user, payload)
        tx = self._pending(user, payload, target, models.PaymentGateway.STRIPE)
        try:
            intent = gateways.stripe_create_intent(
                cfg["stripe_secret_key"],
                gateways.to_minor_units(tx.amount),
                tx.currency,
                {"transaction_id": str(tx.id), "user_id": str(user.id), "type": tx.type.value},
                tx.description,
            )
        except Exception as exc:
            logger.exception("stripe_intent_failed transaction_id=%s", tx.id)
            self._fail(tx, str(exc))
            raise GatewayError(f"Stripe error: {exc}")
        tx.reference_id = intent["id"]
        tx.gateway_response = intent
        tx = self.repo.save(tx)
        logger.info("stripe_intent_created transaction_id=%s intent=%s", tx.id, intent["id"])
        return {
            "transaction_id": tx.id,
            "payment_intent_id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": tx.amount,
            "currency": tx.currency,
            "publishable_key": cfg["stripe_publishable_key"],
        }

    def confirm_intent(self, user: models.User, intent_id: str) -> dict:
        tx = self.repo.get_by_reference(intent_id)
        if not tx or tx.gateway != models.PaymentGateway.STRIPE:
            raise NotFoundError("Transaction not found")
        if tx.user_id != user.id:
            raise ForbiddenError()
        if tx.status == models.TransactionStatus.COMPLETED:
            return {"success": True, "status": tx.status.value, "transaction": transaction_out(tx)}
        if tx.status not in PAYABLE:
            raise BadRequestError(f"Transaction is {tx.status.value.lower()}")
        cfg = SettingsService(self.session).payment_settings()
        if not cfg["stripe_enabled"]:
            raise GatewayError("Stripe payments are not configured")
        try:
            intent = gateways.stripe_retrieve_intent(cfg["stripe_secret_key"], intent_id)
        except Exception as exc:
            logger.exception("stripe_retrieve_failed intent=%s", intent_id)
            raise GatewayError(f"Stripe error: {exc}")
        if intent["status"] == "succeeded":
            tx = self.complete(tx, payment_id=intent.get("latest_charge") or intent["id"],
                               payment_method=intent.get("payment_method"), response=intent)
            return {"success": True, "status": tx.status.value, "transaction": transaction_out(tx)}
        return {"success": False, "status": intent["status"], "transaction": transaction_out(tx)}

    # -- Razorpay ---------------------------------------------------------

    def create_order(self, user: models.User, payload: dict) -> dict:
        cfg = SettingsService(self.session).payment_settings()
        if not cfg["razorpay_enabled"]:
            raise GatewayError("Razorpay payments are not configured")
        target = self._checked_target(user, payload)
        tx = self._pending(user, payload, target, models.PaymentGateway.RAZORPAY)
        try:
            order = gateways.razorpay_create_order(
                cfg["razorpay_key_id"], cfg["razorpay_key_secret"],
                gateways.to_minor_units(tx.amount), tx.currency,
                receipt=f"txn_{tx.id}",
                notes={"transaction_id": str(tx.id), "user_id": str(user.id), "type": tx.type.value},
            )
        except Exception as exc:
            logger.exception("razorpay_order_failed transaction_id=%s", tx.id)
            self._fail(tx, str(exc))
            raise GatewayError(f"Razorpay error: {exc}")
        tx.reference_id = order["id"]
        tx.gateway_response = order
        tx = self.repo.save(tx)
        logger.info("razorpay_order_created transaction_id=%s order=%s", tx.id, order["id"])
        return {
            "transaction_id": tx.id,
            "order_id": order["id"],
            "amount": tx.amount,
            "amount_minor": gateways.to_minor_units(tx.amount),
            "currency": tx.currency,
            "key_id": cfg["razorpay_key_id"],
            "description": tx.description,
        }

    def verify_order(self, user: models.User, order_id: str, payment_id: str, signature: str) -> dict:
        cfg = SettingsService(self.session).payment_settings()
        if not gateways.verify_razorpay_payment(order_id, payment_id, signature, cfg["razorpay_key_secret"]):
            logger.warning("razorpay_signature_invalid order=%s", order_id)
            raise BadRequestError("Invalid payment signature")
        tx = self.repo.get_by_reference(order_id)
        if not tx:
            raise NotFoundError("Transaction not found")
        if tx.user_id != user.id:
            raise ForbiddenError()
        if tx.status == models.TransactionStatus.COMPLETED:
            raise BadRequestError("Transaction is already completed")
        if tx.status not in PAYABLE:
            raise BadRequestError(f"Transaction is {tx.status.value.lower()}")
        tx = self.complete(tx, payment_id=payment_id, payment_method="razorpay",
                           response={"razorpay_order_id": order_id, "razorpay_payment_id": payment_id})
        return {"success": True, "transaction": transaction_out(tx)}

    # -- completion -------------------------------------------------------

    def complete(self, tx: models.Transaction, payment_id: Optional[str] = None,
                 payment_method: Optional[str] = None, response: Optional[dict] = None) -> models.Transaction:
        """Mark COMPLETED and fulfil. Anything not PENDING or PROCESSING is left untouched."""
        if tx.status not in PAYABLE:
            if tx.status != models.TransactionStatus.COMPLETED:
                logger.warning("payment_completion_ignored transaction_id=%s status=%s", tx.id, tx.status.value)
            return tx
        tx.status = models.TransactionStatus.COMPLETED
        tx.payment_id = payment_id or tx.payment_id
        tx.payment_method = payment_method or tx.payment_method
        if response:
            tx.gateway_response = {**(tx.gateway_response or {}), "completion": response}
        tx.updated_at = utcnow()
        tx = self.repo.save(tx)
        self.fulfil(tx)
        logger.info("payment_completed transaction_id=%s type=%s", tx.id, tx.type.value)
        user = self.session.get(models.User, tx.user_id)
        if user:
            send_email(EmailType.PAYMENT_SUCCESS, user.email, {
                "first_name": user.first_name,
                "amount": f"{tx.amount:.2f}",
                "currency": tx.currency,
                "description": tx.description,
                "transaction_id": tx.id,
            })
            NotificationService(self.session).notify(
                user.id, "PAYMENT_SUCCESS", "Payment received",
                f"We received {tx.amount:.2f} {tx.currency} for {tx.description}.", "/payments",
            )
        return tx

    def fulfil(self, tx: models.Transaction) -> None:
        if tx.type == models.TransactionType.COURSE_PURCHASE and tx.course_id:
            course = self.session.get(models.Course, tx.course_id)
            user = self.session.get(models.User, tx.user_id)
            if course and user:
                CourseService(self.session).grant_enrollment(user, course)
        elif tx.type == models.TransactionType.APPOINTMENT_BOOKING and tx.appointment_id:
            appointment = self.session.get(models.Appointment, tx.appointment_id)
            if appointment and appointment.status == models.AppointmentStatus.SCHEDULED:
                appointment.status = models.AppointmentStatus.CONFIRMED
                appointment.updated_at = utcnow()
                self.session.add(appointment)
                self.session.commit()
        # TEST_PURCHASE: access is derived from the completed transaction itself

    def mark_failed(self, tx: models.Transaction, reason: Optional[str],
                    status: models.TransactionStatus = models.TransactionStatus.FAILED) -> None:
        if tx.status in (models.TransactionStatus.COMPLETED, models.TransactionStatus.REFUNDED):
            return
        tx.status = status
        tx.failure_reason = reason
        tx.updated_at = utcnow()
        self.repo.save(tx)
        if status == models.TransactionStatus.FAILED:
            user = self.session.get(models.User, tx.user_id)
            if user:
                send_email(EmailType.PAYMENT_FAILED, user.email, {
                    "first_name": user.first_name, "amount": f"{tx.amount:.2f}",
                    "currency": tx.currency, "reason": reason,
                })

    def _mark_refunded(self, tx: models.Transaction, refund_id: Optional[str]) -> None:
        if tx.status == models.TransactionStatus.REFUNDED:
            return
        tx.status = models.TransactionStatus.REFUNDED
        tx.refund_id = refund_id or tx.refund_id
        tx.updated_at = utcnow()
        self.repo.save(tx)
        if tx.type == models.TransactionType.COURSE_PURCHASE and tx.course_id:
            course = self.session.get(models.Course, tx.course_id)
            if course:
                CourseService(self.session).revoke_enrollment(tx.user_id, course)

    # -- webhooks ---------------------------------------------------------

    def handle_stripe_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        cfg = SettingsService(self.session).payment_settings()
        if not cfg["stripe_webhook_secret"]:
            raise GatewayError("Stripe webhook secret is not configured")
        try:
            event = gateways.stripe_parse_event(payload, signature or "", cfg["stripe_webhook_secret"])
        except ValueError as exc:
            logger.warning("stripe_webhook_rejected reason=%s", exc)
            raise BadRequestError("Invalid webhook signature or payload")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("stripe_webhook type=%s id=%s", event_type, obj.get("id"))
        if event_type in ("payment_intent.succeeded", "payment_intent.payment_failed", "payment_intent.canceled"):
            tx = self.repo.get_by_reference(obj.get("id", ""))
            if tx is None and (obj.get("metadata") or {}).get("transaction_id"):
                tx = self.repo.get(int(obj["metadata"]["transaction_id"]))
            if tx is None:
                return {"received": True, "handled": False}
            if tx.status not in PAYABLE:
                logger.info("stripe_webhook_ignored transaction_id=%s status=%s", tx.id, tx.status.value)
                return {"received": True, "handled": False}
            if event_type == "payment_intent.succeeded":
                self.complete(tx, payment_id=obj.get("latest_charge") or obj.get("id"),
                              payment_method=obj.get("payment_method"), response={"event": event_type})
            elif event_type == "payment_intent.payment_failed":
                self.mark_failed(tx, ((obj.get("last_payment_error") or {}).get("message")) or "payment failed")
            else:
                self.mark_failed(tx, "payment cancelled", models.TransactionStatus.CANCELLED)
            return {"received": True, "handled": True}
        if event_type == "charge.refunded":
            tx = self.repo.get_by_reference(obj.get("payment_intent") or "")
            if tx is None:
                return {"received": True, "handled": False}
            refunds = ((obj.get("refunds") or {}).get("data")) or [{}]
            self._mark_refunded(tx, refunds[0].get("id"))
            return {"received": True, "handled": True}
        return {"received": True, "handled": False}

    def handle_razorpay_webhook(self, body: bytes, signature: Optional[str]) -> dict:
        cfg = SettingsService(self.session).payment_settings()
        if not gateways.verify_razorpay_webhook(body, signature or "", cfg["razorpay_webhook_secret"]):
            logger.warning("razorpay_webhook_rejected")
            raise BadRequestError("Invalid webhook signature")
        try:
            event = json.loads(body)
        except ValueError:
            raise BadRequestError("Invalid webhook payload")
        event_type = event.get("event")
        data = event.get("payload") or {}
        payment = (data.get("payment") or {}).get("entity") or {}
        logger.info("razorpay_webhook event=%s payment=%s", event_type, payment.get("id"))
        if event_type in ("payment.captured", "order.paid"):
            order_id = payment.get("order_id") or ((data.get("order") or {}).get("entity") or {}).get("id")
            tx = self.repo.get_by_reference(order_id or "")
            if tx is None:
                return {"received": True, "handled": False}
            if tx.status not in PAYABLE:
                logger.info("razorpay_webhook_ignored transaction_id=%s status=%s", tx.id, tx.status.value)
                return {"received": True, "handled": False}
            self.complete(tx, payment_id=payment.get("id"), payment_method=payment.get("method"),
                          response={"event": event_type})
            return {"received": True, "handled": True}
        if event_type == "payment.failed":
            tx = self.repo.get_by_reference(payment.get("order_id") or "")
            if tx is None:
                return {"received": True, "handled": False}
            self.mark_failed(tx, payment.get("error_description") or "payment failed")
            return {"received": True, "handled": True}
        if event_type == "refund.processed":
            refund = (data.get("refund") or {}).get("entity") or {}
            tx = self.repo.get_by_payment_id(refund.get("payment_id") or "")
            if tx is None:
                return {"received": True, "handled": False}
            self._mark_refunded(tx, refund.get("id"))
            return {"received": True, "handled": True}
        return {"received": True, "handled": False}

    # -- listing, refunds, stats ------------------------------------------

    def list_for_user(self, user: models.User, page: int, limit: int,
                      status: Optional[models.TransactionStatus] = None) -> dict:
        items, total = self.repo.search(page, limit, user_id=user.id, status=status)
        return {"transactions": [transaction_out(t) for t in items], "pagination": pagination_block(page, limit, total)}

    def list_all(self, page: int, limit: int, **filters) -> dict:
        items, total = self.repo.search(page, limit, **filters)
        users = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids([t.user_id for t in items])}
        return {
            "transactions": [
                {**transaction_out(t), "user_email": users[t.user_id].email if t.user_id in users else None}
                for t in items
            ],
            "pagination": pagination_block(page, limit, total),
        }

    def refund(self, transaction_id: int, reason: Optional[str] = None) -> dict:
        tx = self.repo.get(transaction_id)
        if not tx:
            raise NotFoundError("Transaction not found")
        if tx.status != models.TransactionStatus.COMPLETED:
            raise BadRequestError("Only completed transactions can be refunded")
        cfg = SettingsService(self.session).payment_settings()
        stripe_tx = tx.gateway == models.PaymentGateway.STRIPE
        if stripe_tx and not cfg["stripe_secret_key"]:
            raise GatewayError("Stripe payments are not configured")
        if not stripe_tx and not (cfg["razorpay_key_id"] and cfg["razorpay_key_secret"]):
            raise GatewayError("Razorpay payments are not configured")
        try:
            if stripe_tx:
                refund = gateways.stripe_refund(cfg["stripe_secret_key"], tx.reference_id)
            else:
                refund = gateways.razorpay_refund(cfg["razorpay_key_id"], cfg["razorpay_key_secret"], tx.payment_id)
        except Exception as exc:
            logger.exception("refund_failed transaction_id=%s", tx.id)
            raise GatewayError(f"Refund failed: {exc}")
        if reason:
            tx.failure_reason = reason
        tx.gateway_response = {**(tx.gateway_response or {}), "refund": refund}
        self._mark_refunded(tx, refund.get("id"))
        logger.info("payment_refunded transaction_id=%s refund=%s", tx.id, refund.get("id"))
        return transaction_out(tx)

    def stats(self) -> dict:
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        T = models.Transaction
        return {
            "total_revenue": self.repo.revenue(),
            "revenue_this_month": self.repo.revenue(start=month_start),
            "total_transactions": self.repo.count(),
            "completed_transactions": self.repo.count(T.status == models.TransactionStatus.COMPLETED),
            "failed_transactions": self.repo.count(T.status == models.TransactionStatus.FAILED),
            "refunded_transactions": self.repo.count(T.status == models.TransactionStatus.REFUNDED),
            "by_status": self.repo.grouped_count(T.status),
            "by_gateway": self.repo.grouped_count(T.gateway),
            "by_type": self.repo.grouped_count(T.type),
            "revenue_by_type": {
                t.value: self.repo.revenue(tx_type=t) for t in models.TransactionType
            },
        }
