import json
import logging
from unittest.mock import Mock, patch

import pytest

from payments.callbacks import CALLBACK_ACKNOWLEDGEMENT
from shop_backend.exceptions import AuthenticationError, IntegrationError, NotFoundError, ValidationError

STK_RESULT = {
    'merchant_request_id': '29115-34620561-1',
    'checkout_request_id': 'ws_CO_1',
    'response_code': '0',
    'response_description': 'Success. Request accepted for processing',
    'customer_message': 'Success. Request accepted for processing',
}


@pytest.fixture
def mpesa():
    service = Mock()
    with patch('payments.views.get_mpesa_service', return_value=service):
        yield service


def post_json(client, url, data, **extra):
    return client.post(url, data=json.dumps(data), content_type='application/json', **extra)


class TestStkPushView:

    def test_success(self, client, mpesa, firebase_user, auth_header):
        mpesa.initiate_stk_push.return_value = STK_RESULT

        response = post_json(client, '/api/payments/mpesa/stkpush/', {
            'phone': '0712345678', 'amount': 245, 'order_id': 'order-1',
        }, **auth_header)

        assert response.status_code == 200
        assert response.json() == {
            'success': True,
            'data': STK_RESULT,
            'message': 'Payment initiated successfully. Check your phone for M-Pesa prompt.',
        }
        mpesa.initiate_stk_push.assert_called_once_with(
            phone='0712345678', amount=245, order_id='order-1', description=None, account_reference=None,
        )

    def test_missing_fields(self, client, mpesa, firebase_user, auth_header):
        response = post_json(client, '/api/payments/mpesa/stkpush/', {'phone': '0712345678'}, **auth_header)

        assert response.status_code == 400
        assert response.json()['error'] == 'Missing required fields: amount, order_id'
        mpesa.initiate_stk_push.assert_not_called()

    def test_validation_error_is_400(self, client, mpesa, firebase_user, auth_header):
        mpesa.initiate_stk_push.side_effect = ValidationError('Invalid phone number format. Use: 2547XXXXXXXX')

        response = post_json(client, '/api/payments/mpesa/stkpush/', {
            'phone': '12345', 'amount': 245, 'order_id': 'order-1',
        }, **auth_header)

        assert response.status_code == 400
        assert response.json()['error'] == 'Invalid phone number format. Use: 2547XXXXXXXX'
        assert response.json()['code'] == 'PAYMENT_INITIATION_FAILED'

    def test_auth_failure_hides_details(self, client, mpesa, firebase_user, auth_header):
        mpesa.initiate_stk_push.side_effect = AuthenticationError('401 Unauthorized for consumer key abc')

        response = post_json(client, '/api/payments/mpesa/stkpush/', {
            'phone': '0712345678', 'amount': 245, 'order_id': 'order-1',
        }, **auth_header)

        assert response.status_code == 500
        assert response.json()['error'] == 'Failed to authenticate with payment provider'

    def test_unexpected_error(self, client, mpesa, firebase_user, auth_header):
        mpesa.initiate_stk_push.side_effect = RuntimeError('boom')

        response = post_json(client, '/api/payments/mpesa/stkpush/', {
            'phone': '0712345678', 'amount': 245, 'order_id': 'order-1',
        }, **auth_header)

        assert response.status_code == 500
        assert response.json()['error'] == 'Payment initiation failed'

    def test_requires_token(self, client, mpesa):
        response = post_json(client, '/api/payments/mpesa/stkpush/', {})

        assert response.status_code == 401


class TestCallbackView:

    def test_always_acknowledges(self, client):
        reconciler = Mock()
        reconciler.handle.return_value = dict(CALLBACK_ACKNOWLEDGEMENT)
        payload = {'Body': {'stkCallback': {'CheckoutRequestID': 'ws_CO_1', 'ResultCode': 0}}}

        with patch('payments.views.get_callback_reconciler', return_value=reconciler):
            response = post_json(client, '/api/payments/mpesa/callback/', payload)

        assert response.status_code == 200
        assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}
        reconciler.handle.assert_called_once_with(payload)

    def test_unreadable_body_is_acknowledged(self, client):
        with patch('payments.views.get_callback_reconciler') as get_reconciler:
            response = client.post('/api/payments/mpesa/callback/', data='<xml/>', content_type='text/xml')

        assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}
        get_reconciler.assert_not_called()

    def test_no_auth_required(self, client, transaction_repo):
        from payments.callbacks import CallbackReconciler

        reconciler = CallbackReconciler(transaction_repo=transaction_repo, order_service=Mock())
        with patch('payments.views.get_callback_reconciler', return_value=reconciler):
            response = post_json(client, '/api/payments/mpesa/callback/', {'Body': {}})

        assert response.status_code == 200
        assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}

    def test_acknowledged_when_reconciler_cannot_be_built(self, client):
        failure = RuntimeError('firestore credentials missing')
        with patch('payments.views.get_callback_reconciler', side_effect=failure):
            response = post_json(client, '/api/payments/mpesa/callback/', {'Body': {}})

        assert response.status_code == 200
        assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}

    def test_acknowledged_when_handle_raises(self, client):
        reconciler = Mock()
        reconciler.handle.side_effect = RuntimeError('boom')
        with patch('payments.views.get_callback_reconciler', return_value=reconciler):
            response = post_json(client, '/api/payments/mpesa/callback/', {'Body': {}})

        assert response.status_code == 200
        assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}

    def test_payer_phone_is_not_logged(self, client, transaction_repo, caplog):
        from payments.callbacks import CallbackReconciler

        transaction_repo.create_transaction({'order_id': 'order-1', 'checkout_request_id': 'ws_CO_1', 'amount': 10})
        reconciler = CallbackReconciler(transaction_repo=transaction_repo, order_service=Mock())
        payload = {'Body': {'stkCallback': {
            'CheckoutRequestID': 'ws_CO_1',
            'ResultCode': 0,
            'ResultDesc': 'The service request is processed successfully.',
            'CallbackMetadata': {'Item': [
                {'Name': 'MpesaReceiptNumber', 'Value': 'ABC123'},
                {'Name': 'PhoneNumber', 'Value': 254712345678},
            ]},
        }}}

        with caplog.at_level(logging.DEBUG), \
                patch('payments.views.get_callback_reconciler', return_value=reconciler):
            post_json(client, '/api/payments/mpesa/callback/', payload)

        assert 'ws_CO_1' in caplog.text
        assert '254712345678' not in caplog.text


class TestQueryView:

    def test_success(self, client, mpesa, firebase_user, auth_header):
        mpesa.query_transaction.return_value = {'result_code': '0', 'result_desc': 'ok'}

        response = post_json(client, '/api/payments/transactions/query/', {'checkout_request_id': 'ws_CO_1'},
                             **auth_header)

        assert response.json() == {'success': True, 'data': {'result_code': '0', 'result_desc': 'ok'}}

    def test_missing_checkout_request_id(self, client, mpesa, firebase_user, auth_header):
        response = post_json(client, '/api/payments/transactions/query/', {}, **auth_header)

        assert response.status_code == 400

    def test_unknown_transaction(self, client, mpesa, firebase_user, auth_header):
        mpesa.query_transaction.side_effect = NotFoundError('Transaction not found: ws_CO_9')

        response = post_json(client, '/api/payments/transactions/query/', {'checkout_request_id': 'ws_CO_9'},
                             **auth_header)

        assert response.status_code == 404

    def test_gateway_error(self, client, mpesa, firebase_user, auth_header):
        mpesa.query_transaction.side_effect = IntegrationError('Transaction query failed: timeout')

        response = post_json(client, '/api/payments/transactions/query/', {'checkout_request_id': 'ws_CO_1'},
                             **auth_header)

        assert response.status_code == 500
        assert response.json()['error'] == 'Failed to query transaction status'


class TestOrderTransactionsView:

    @pytest.fixture(autouse=True)
    def wiring(self, order_service, transaction_repo):
        with patch('payments.views.get_order_service', return_value=order_service), \
                patch('payments.views.TransactionRepository', return_value=transaction_repo):
            yield

    def test_owner_sees_ledger(self, client, firebase_user, auth_header, create_order, transaction_repo):
        order = create_order()
        transaction_repo.create_transaction({'order_id': order['id'], 'status': 'initiated'})

        response = client.get(f"/api/payments/transactions/{order['id']}/", **auth_header)

        assert response.status_code == 200
        assert [row['status'] for row in response.json()['data']] == ['initiated']

    def test_other_user_is_forbidden(self, client, firebase_user, auth_header, create_order, transaction_repo):
        order = create_order(user_id='user-2')
        transaction_repo.create_transaction({'order_id': order['id'], 'phone': '254712345678'})

        response = client.get(f"/api/payments/transactions/{order['id']}/", **auth_header)

        assert response.status_code == 403
        assert 'data' not in response.json()

    def test_admin_sees_any_ledger(self, client, firebase_user, auth_header, create_order):
        firebase_user.return_value = {'uid': 'admin-1', 'admin': True}
        order = create_order(user_id='user-2')

        assert client.get(f"/api/payments/transactions/{order['id']}/", **auth_header).status_code == 200

    def test_unknown_order(self, client, firebase_user, auth_header):
        assert client.get('/api/payments/transactions/missing/', **auth_header).status_code == 404


def test_mpesa_health(client, mpesa):
    mpesa.health_check.return_value = True

    response = client.get('/health/mpesa/')

    assert response.json()['healthy'] is True
    assert response.json()['environment'] == 'sandbox'


def test_b2b_requires_admin(client, mpesa, firebase_user, auth_header):
    response = post_json(client, '/api/admin/payments/b2b/', {
        'receiver_short_code': '600000', 'amount': 500, 'account_reference': 'INV-1',
    }, **auth_header)

    assert response.status_code == 403
    mpesa.b2b_payment.assert_not_called()


def test_b2b_payment(client, mpesa, firebase_user, auth_header):
    firebase_user.return_value = {'uid': 'admin-1', 'isAdmin': True}
    mpesa.b2b_payment.return_value = {'ConversationID': 'AG_1'}

    response = post_json(client, '/api/admin/payments/b2b/', {
        'receiver_short_code': '600000', 'amount': 500, 'account_reference': 'INV-1',
    }, **auth_header)

    assert response.json() == {'success': True, 'data': {'ConversationID': 'AG_1'}}
    mpesa.b2b_payment.assert_called_once_with(
        receiver_short_code='600000', amount=500, account_reference='INV-1', remarks='B2B payment',
    )
