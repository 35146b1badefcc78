"""Thin wrappers around the Stripe and Razorpay SDKs plus signature helpers.

The wrappers return plain dicts so services never depend on SDK object
types; tests replace them with `monkeypatch`.
"""

import hashlib
import hmac
import json
from typing import Optional

import stripe

# Smallest chargeable amount per currency, in major units.
MIN_AMOUNTS = {"USD": 0.50, "EUR": 0.50, "GBP": 0.30, "INR": 1.00}


def to_minor_units(amount: float) -> int:
    """Cents / paise as the gateways expect them."""
    return int(round(amount * 100))


def below_minimum(amount: float, currency: str) -> Optional[float]:
    """Return the currency minimum when `amount` is below it, else None."""
    minimum = MIN_AMOUNTS.get(currency.upper())
    if minimum is not None and amount < minimum:
        return minimum
    return None


def recommended_gateway(currency: Optional[str], country: Optional[str] = None) -> str:
    """Razorpay for INR or Indian customers, Stripe otherwise."""
    if (currency or "").upper() == "INR" or (country or "").upper() in ("IN", "IND", "INDIA"):
        return "RAZORPAY"
    return "STRIPE"


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def razorpay_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_hex(secret, f"{order_id}|{payment_id}".encode())


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(razorpay_payment_signature(order_id, payment_id, secret), signature)


def verify_razorpay_webhook(body: bytes, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(_hmac_hex(secret, body), signature)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

def _intent_dict(intent) -> dict:
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
        "latest_charge": getattr(intent, "latest_charge", None),
        "payment_method": getattr(intent, "payment_method", None),
    }


def stripe_create_intent(secret_key: str, amount_minor: int, currency: str, metadata: dict,
                         description: str) -> dict:
    intent = stripe.PaymentIntent.create(
        api_key=secret_key,
        amount=amount_minor,
        currency=currency.lower(),
        metadata=metadata,
        description=description,
        automatic_payment_methods={"enabled": True},
    )
    return _intent_dict(intent)


def stripe_retrieve_intent(secret_key: str, intent_id: str) -> dict:
    return _intent_dict(stripe.PaymentIntent.retrieve(intent_id, api_key=secret_key))


def stripe_refund(secret_key: str, intent_id: str) -> dict:
    refund = stripe.Refund.create(api_key=secret_key, payment_intent=intent_id)
    return {"id": refund.id, "status": refund.status}


def stripe_parse_event(payload: bytes, sig_header: str, secret: str) -> dict:
    """Verify the `Stripe-Signature` header and return the decoded event.

    Raises ValueError for a bad payload or signature.
    """
    try:
        stripe.Webhook.construct_event(payload, sig_header, secret)
    except stripe.SignatureVerificationError as exc:
        raise ValueError(f"invalid signature: {exc}")
    return json.loads(payload)


# ---------------------------------------------------------------------------
# Razorpay
# ---------------------------------------------------------------------------

def _razorpay_client(key_id: str, key_secret: str):
    import razorpay

    return razorpay.Client(auth=(key_id, key_secret))


def razorpay_create_order(key_id: str, key_secret: str, amount_minor: int, currency: str,
                          receipt: str, notes: dict) -> dict:
    order = _razorpay_client(key_id, key_secret).order.create({
        "amount": amount_minor,
        "currency": currency.upper(),
        "receipt": receipt,
        "notes": notes,
        "payment_capture": 1,
    })
    return dict(order)


def razorpay_refund(key_id: str, key_secret: str, payment_id: str) -> dict:
    return dict(_razorpay_client(key_id, key_secret).payment.refund(payment_id, {}))
