import asyncio
import hashlib
import hmac
import json
import time
import uuid

import pytest

from studyabroad.services.payments import PaymentService
from studyabroad.utils import gateways
from studyabroad.utils.mailer import outbox

RAZORPAY_SECRET = 'rzp_test_secret'
STRIPE_WEBHOOK_SECRET = 'whsec_test_secret'


def test_gateway_helpers():
    assert gateways.to_minor_units(499.99) == 49999
    assert gateways.below_minimum(0.4, 'usd') == 0.50
    assert gateways.below_minimum(0.4, 'JPY') is None
    assert gateways.below_minimum(5, 'INR') is None
    assert gateways.recommended_gateway('INR') == 'RAZORPAY'
    assert gateways.recommended_gateway('USD', 'in') == 'RAZORPAY'
    assert gateways.recommended_gateway('EUR', 'DE') == 'STRIPE'


def test_razorpay_signatures():
    sig = gateways.razorpay_payment_signature('order_1', 'pay_1', 'secret')
    assert sig == hmac.new(b'secret', b'order_1|pay_1', hashlib.sha256).hexdigest()
    assert gateways.verify_razorpay_payment('order_1', 'pay_1', sig, 'secret')
    assert not gateways.verify_razorpay_payment('order_1', 'pay_2', sig, 'secret')
    assert not gateways.verify_razorpay_payment('order_1', 'pay_1', sig, '')
    body = b'{"event":"order.paid"}'
    assert gateways.verify_razorpay_webhook(body, hmac.new(b'w', body, hashlib.sha256).hexdigest(), 'w')


def test_payment_config(client):
    cfg = client.get('/payments/config').json()
    assert cfg['stripe'] == {'enabled': True, 'publishable_key': 'pk_test_dummy'}
    assert cfg['razorpay'] == {'enabled': True, 'key_id': 'rzp_test_key'}
    assert cfg['default_currency'] == 'INR'
    assert cfg['recommended_gateway'] == 'RAZORPAY'
    assert client.get('/payments/config', params={'currency': 'usd'}).json()['recommended_gateway'] == 'STRIPE'


@pytest.fixture
def fake_razorpay(monkeypatch):
    created = []

    def fake_order(key_id, key_secret, amount_minor, currency, receipt, notes):
        order = {'id': f'order_{uuid.uuid4().hex[:10]}', 'amount': amount_minor, 'currency': currency,
                 'receipt': receipt}
        created.append(order)
        return order

    monkeypatch.setattr('studyabroad.utils.gateways.razorpay_create_order', fake_order)
    return created


def _pay_with_razorpay(client, h, purchase):
    r = client.post('/payments/create-order', json=purchase, headers=h)
    assert r.status_code == 201, r.text
    order = r.json()
    payment_id = f'pay_{uuid.uuid4().hex[:10]}'
    signature = gateways.razorpay_payment_signature(order['order_id'], payment_id, RAZORPAY_SECRET)
    verify = client.post('/payments/verify', json={
        'razorpay_order_id': order['order_id'], 'razorpay_payment_id': payment_id, 'razorpay_signature': signature,
    }, headers=h)
    return order, verify


def test_razorpay_course_purchase_grants_enrollment(client, make_course, student, headers, fake_razorpay):
    course = make_course(price=499)
    h = headers(student)
    order, verify = _pay_with_razorpay(client, h, {'type': 'COURSE_PURCHASE', 'course_id': course['id']})
    assert order['amount_minor'] == 49900
    assert order['key_id'] == 'rzp_test_key'
    assert fake_razorpay[-1]['receipt'] == f"txn_{order['transaction_id']}"

    assert verify.status_code == 200
    assert verify.json()['transaction']['status'] == 'COMPLETED'
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is True
    assert {'PAYMENT_SUCCESS', 'COURSE_ENROLLMENT'} <= {m['type'] for m in outbox}

    # a second purchase of the same course is refused
    r = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']}, headers=h)
    assert r.status_code == 400


def test_razorpay_rejects_bad_signature(client, make_course, student, headers, fake_razorpay):
    course = make_course(price=799)
    h = headers(student)
    order = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                        headers=h).json()
    r = client.post('/payments/verify', json={
        'razorpay_order_id': order['order_id'], 'razorpay_payment_id': 'pay_x', 'razorpay_signature': 'deadbeef',
    }, headers=h)
    assert r.status_code == 400
    txs = client.get('/payments/transactions', headers=h).json()['transactions']
    assert next(t for t in txs if t['id'] == order['transaction_id'])['status'] == 'PENDING'
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is False


def test_amount_and_currency_must_match(client, make_course, student, headers, fake_razorpay):
    course = make_course(price=1200)
    h = headers(student)
    r = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id'],
                                                    'amount': 10}, headers=h)
    assert r.status_code == 400
    assert r.json()['expected_amount'] == 1200
    r = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id'],
                                                    'currency': 'USD'}, headers=h)
    assert r.status_code == 400
    free = make_course()
    r = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': free['id']}, headers=h)
    assert r.status_code == 400
    assert fake_razorpay == []


def test_purchase_requires_target_id(client, student, headers):
    r = client.post('/payments/create-order', json={'type': 'TEST_PURCHASE'}, headers=headers(student))
    assert r.status_code == 422


def _stripe_header(payload: str, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f'{ts}.{payload}'.encode(), hashlib.sha256).hexdigest()
    return f't={ts},v1={sig}'


def _intent_event(event_type: str, intent_id: str) -> str:
    return json.dumps({
        'id': f'evt_{uuid.uuid4().hex[:10]}',
        'object': 'event',
        'type': event_type,
        'data': {'object': {'id': intent_id, 'object': 'payment_intent', 'latest_charge': 'ch_1',
                            'payment_method': 'pm_card_visa', 'metadata': {}}},
    })


@pytest.fixture
def fake_stripe(monkeypatch):
    def fake_intent(secret_key, amount_minor, currency, metadata, description):
        return {'id': f'pi_{uuid.uuid4().hex[:12]}', 'client_secret': 'cs_test', 'status': 'requires_payment_method',
                'amount': amount_minor, 'currency': currency.lower(), 'metadata': metadata}

    monkeypatch.setattr('studyabroad.utils.gateways.stripe_create_intent', fake_intent)


def test_stripe_webhook_completes_payment(client, make_course, student, headers, fake_stripe):
    course = make_course(price=49.99, currency='USD')
    h = headers(student)
    r = client.post('/payments/create-intent', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']}, headers=h)
    assert r.status_code == 201, r.text
    intent = r.json()
    assert intent['currency'] == 'USD'
    assert intent['publishable_key'] == 'pk_test_dummy'

    payload = _intent_event('payment_intent.succeeded', intent['payment_intent_id'])
    r = client.post('/payments/webhooks/stripe', content=payload,
                    headers={'Stripe-Signature': _stripe_header(payload), 'Content-Type': 'application/json'})
    assert r.status_code == 200
    assert r.json() == {'received': True, 'handled': True}
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is True

    # replays are harmless
    r = client.post('/payments/webhooks/stripe', content=payload,
                    headers={'Stripe-Signature': _stripe_header(payload), 'Content-Type': 'application/json'})
    assert r.status_code == 200
    confirm = client.post('/payments/confirm', json={'payment_intent_id': intent['payment_intent_id']}, headers=h)
    assert confirm.json()['success'] is True


def test_stripe_webhook_rejects_bad_signature(client):
    payload = _intent_event('payment_intent.succeeded', 'pi_unknown')
    r = client.post('/payments/webhooks/stripe', content=payload,
                    headers={'Stripe-Signature': _stripe_header(payload, 'whsec_wrong')})
    assert r.status_code == 400
    r = client.post('/payments/webhooks/stripe', content=payload)
    assert r.status_code == 400


def test_stripe_confirm_polls_intent(client, make_course, student, headers, fake_stripe, monkeypatch):
    course = make_course(price=20, currency='USD')
    h = headers(student)
    intent = client.post('/payments/create-intent', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                         headers=h).json()
    status = {'value': 'processing'}
    monkeypatch.setattr('studyabroad.utils.gateways.stripe_retrieve_intent',
                        lambda key, intent_id: {'id': intent_id, 'status': status['value'], 'latest_charge': 'ch_9',
                                                'payment_method': 'pm_1'})
    r = client.post('/payments/confirm', json={'payment_intent_id': intent['payment_intent_id']}, headers=h)
    assert r.json()['success'] is False
    assert r.json()['transaction']['status'] == 'PENDING'
    status['value'] = 'succeeded'
    r = client.post('/payments/confirm', json={'payment_intent_id': intent['payment_intent_id']}, headers=h)
    assert r.json()['success'] is True
    assert r.json()['transaction']['payment_id'] == 'ch_9'


def test_stripe_gateway_failure_marks_transaction_failed(client, make_course, student, headers, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError('card network unavailable')

    monkeypatch.setattr('studyabroad.utils.gateways.stripe_create_intent', boom)
    course = make_course(price=30, currency='USD')
    h = headers(student)
    r = client.post('/payments/create-intent', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']}, headers=h)
    assert r.status_code == 502
    txs = client.get('/payments/transactions', params={'status': 'FAILED'}, headers=h).json()['transactions']
    assert any(t['course_id'] == course['id'] for t in txs)


def test_razorpay_webhook_captures_order(client, make_course, student, headers, fake_razorpay):
    course = make_course(price=650)
    h = headers(student)
    order = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                        headers=h).json()
    body = json.dumps({'event': 'payment.captured', 'payload': {'payment': {'entity': {
        'id': 'pay_hook_1', 'order_id': order['order_id'], 'method': 'upi'}}}}).encode()
    sig = hmac.new(b'rzp_webhook_secret', body, hashlib.sha256).hexdigest()
    r = client.post('/payments/webhooks/razorpay', content=body, headers={'X-Razorpay-Signature': sig})
    assert r.status_code == 200
    assert r.json()['handled'] is True
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is True

    r = client.post('/payments/webhooks/razorpay', content=body, headers={'X-Razorpay-Signature': 'nope'})
    assert r.status_code == 400


def test_paid_test_is_gated_until_purchased(client, make_test, student, headers, fake_razorpay):
    test = make_test(price=299, is_free=False)
    h = headers(student)
    r = client.post(f"/tests/{test['id']}/start", headers=h)
    assert r.status_code == 402
    assert r.json()['test']['price'] == 299
    assert client.get(f"/tests/{test['id']}", headers=h).json()['has_access'] is False

    _, verify = _pay_with_razorpay(client, h, {'type': 'TEST_PURCHASE', 'test_id': test['id']})
    assert verify.status_code == 200
    assert client.post(f"/tests/{test['id']}/start", headers=h).status_code == 201
    r = client.post('/payments/create-order', json={'type': 'TEST_PURCHASE', 'test_id': test['id']}, headers=h)
    assert r.status_code == 400


def test_refund_revokes_enrollment(client, make_course, student, admin, headers, fake_razorpay, monkeypatch):
    monkeypatch.setattr('studyabroad.utils.gateways.razorpay_refund',
                        lambda key_id, key_secret, payment_id: {'id': 'rfnd_1', 'payment_id': payment_id})
    course = make_course(price=999)
    h = headers(student)
    order, verify = _pay_with_razorpay(client, h, {'type': 'COURSE_PURCHASE', 'course_id': course['id']})
    tx_id = order['transaction_id']

    assert client.post(f'/admin/payments/transactions/{tx_id}/refund', headers=h).status_code == 403
    r = client.post(f'/admin/payments/transactions/{tx_id}/refund', json={'reason': 'duplicate charge'},
                    headers=headers(admin))
    assert r.status_code == 200
    assert r.json()['status'] == 'REFUNDED'
    assert r.json()['refund_id'] == 'rfnd_1'
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is False
    assert client.post(f'/admin/payments/transactions/{tx_id}/refund', headers=headers(admin)).status_code == 400

    listing = client.get('/admin/payments/transactions', params={'user_id': student.id},
                         headers=headers(admin)).json()
    assert listing['transactions'][0]['user_email'] == student.email
    stats = client.get('/admin/payments/stats', headers=headers(admin)).json()
    assert stats['refunded_transactions'] >= 1


def test_paid_appointment_confirmed_after_payment(client, admin, student, headers, fake_razorpay, booking_day):
    h_admin = headers(admin)
    consultant = client.post('/admin/consultants', json={
        'name': 'Arjun Rao', 'email': f'arjun-{uuid.uuid4().hex[:6]}@example.com'}, headers=h_admin).json()
    appt_type = client.post('/admin/appointment-types', json={'name': 'Visa interview prep', 'duration': 30,
                                                              'price': 1500}, headers=h_admin).json()
    h = headers(student)
    booked = client.post('/appointments', json={
        'consultant_id': consultant['id'], 'type_id': appt_type['id'],
        'scheduled_date': booking_day.isoformat(), 'scheduled_time': '11:00'}, headers=h).json()
    assert booked['payment_required'] is True
    assert booked['amount'] == 1500
    appointment_id = booked['appointment']['id']

    _, verify = _pay_with_razorpay(client, h, {'type': 'APPOINTMENT_BOOKING', 'appointment_id': appointment_id})
    assert verify.status_code == 200
    assert client.get(f'/appointments/{appointment_id}', headers=h).json()['status'] == 'CONFIRMED'


def _razorpay_hook(event: str, order_id: str, payment_id: str) -> tuple:
    body = json.dumps({'event': event, 'payload': {'payment': {'entity': {
        'id': payment_id, 'order_id': order_id, 'method': 'card'}}}}).encode()
    return body, hmac.new(b'rzp_webhook_secret', body, hashlib.sha256).hexdigest()


def test_refunded_razorpay_payment_cannot_be_completed_again(client, make_course, student, admin, headers,
                                                             fake_razorpay, monkeypatch):
    monkeypatch.setattr('studyabroad.utils.gateways.razorpay_refund',
                        lambda key_id, key_secret, payment_id: {'id': 'rfnd_2', 'payment_id': payment_id})
    course = make_course(price=1499)
    h = headers(student)
    order = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                        headers=h).json()
    payment_id = 'pay_replayed_1'
    verify_body = {
        'razorpay_order_id': order['order_id'], 'razorpay_payment_id': payment_id,
        'razorpay_signature': gateways.razorpay_payment_signature(order['order_id'], payment_id, RAZORPAY_SECRET),
    }
    assert client.post('/payments/verify', json=verify_body, headers=h).status_code == 200
    r = client.post(f"/admin/payments/transactions/{order['transaction_id']}/refund", headers=headers(admin))
    assert r.json()['status'] == 'REFUNDED'

    # the same signed callback replayed after the refund
    r = client.post('/payments/verify', json=verify_body, headers=h)
    assert r.status_code == 400
    body, sig = _razorpay_hook('payment.captured', order['order_id'], payment_id)
    r = client.post('/payments/webhooks/razorpay', content=body, headers={'X-Razorpay-Signature': sig})
    assert r.status_code == 200
    assert r.json() == {'received': True, 'handled': False}

    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is False
    txs = client.get('/payments/transactions', headers=h).json()['transactions']
    assert next(t for t in txs if t['id'] == order['transaction_id'])['status'] == 'REFUNDED'


def test_refunded_stripe_payment_ignores_late_success_event(client, make_course, student, admin, headers,
                                                           fake_stripe, monkeypatch):
    monkeypatch.setattr('studyabroad.utils.gateways.stripe_refund',
                        lambda secret_key, intent_id: {'id': 're_1', 'payment_intent': intent_id})
    monkeypatch.setattr('studyabroad.utils.gateways.stripe_retrieve_intent',
                        lambda key, intent_id: {'id': intent_id, 'status': 'succeeded', 'latest_charge': 'ch_2',
                                                'payment_method': 'pm_1'})
    course = make_course(price=75, currency='USD')
    h = headers(student)
    intent = client.post('/payments/create-intent', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                         headers=h).json()
    payload = _intent_event('payment_intent.succeeded', intent['payment_intent_id'])
    stripe_headers = {'Stripe-Signature': _stripe_header(payload), 'Content-Type': 'application/json'}
    assert client.post('/payments/webhooks/stripe', content=payload, headers=stripe_headers).json()['handled'] is True
    r = client.post(f"/admin/payments/transactions/{intent['transaction_id']}/refund", headers=headers(admin))
    assert r.status_code == 200
    assert r.json()['refund_id'] == 're_1'

    r = client.post('/payments/webhooks/stripe', content=payload, headers=stripe_headers)
    assert r.json() == {'received': True, 'handled': False}
    r = client.post('/payments/confirm', json={'payment_intent_id': intent['payment_intent_id']}, headers=h)
    assert r.status_code == 400
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is False


def test_failed_order_is_not_completed_by_late_capture(client, make_course, student, headers, fake_razorpay):
    course = make_course(price=250)
    h = headers(student)
    order = client.post('/payments/create-order', json={'type': 'COURSE_PURCHASE', 'course_id': course['id']},
                        headers=h).json()
    body, sig = _razorpay_hook('payment.failed', order['order_id'], 'pay_failed_1')
    assert client.post('/payments/webhooks/razorpay', content=body,
                       headers={'X-Razorpay-Signature': sig}).json()['handled'] is True
    body, sig = _razorpay_hook('payment.captured', order['order_id'], 'pay_late_1')
    assert client.post('/payments/webhooks/razorpay', content=body,
                       headers={'X-Razorpay-Signature': sig}).json()['handled'] is False
    assert client.get(f"/courses/{course['id']}/access", headers=h).json()['has_access'] is False


def test_webhooks_are_handled_off_the_event_loop(client, monkeypatch):
    seen = []

    def record(self, body, signature):
        try:
            asyncio.get_running_loop()
            seen.append('event-loop')
        except RuntimeError:
            seen.append('worker')
        return {'received': True, 'handled': False}

    monkeypatch.setattr(PaymentService, 'handle_stripe_webhook', record)
    monkeypatch.setattr(PaymentService, 'handle_razorpay_webhook', record)
    assert client.post('/payments/webhooks/stripe', content=b'{}').json() == {'received': True, 'handled': False}
    assert client.post('/payments/webhooks/razorpay', content=b'{}').status_code == 200
    assert seen == ['worker', 'worker']
