import json
from unittest.mock import patch

import pytest

from shop_backend.exceptions import InvalidStateError, NotFoundError, PermissionDeniedError


@pytest.fixture
def service(order_service):
    with patch('orders.views.get_order_service', return_value=order_service):
        yield order_service


@pytest.fixture
def admin_user(firebase_user):
    firebase_user.return_value = {'uid': 'admin-1', 'email': 'admin@example.com', 'admin': True}
    return firebase_user


def post_json(client, url, data, method='post', **extra):
    return getattr(client, method)(url, data=json.dumps(data), content_type='application/json', **extra)


class TestCreateOrderView:

    def test_creates_order_owned_by_token_user(self, client, service, firebase_user, auth_header, order_request):
        body = {**order_request, 'user_id': 'someone-else'}

        response = post_json(client, '/api/orders/', body, **auth_header)

        assert response.status_code == 201
        data = response.json()['data']
        assert data['user_id'] == 'user-1'
        assert data['total'] == 245
        assert data['status'] == 'pending'
        assert data['metadata']['source'] == 'web'

    def test_requires_token(self, client, service, order_request):
        response = post_json(client, '/api/orders/', order_request)

        assert response.status_code == 401
        assert response.json()['error'] == 'No token provided'

    def test_validation_errors(self, client, service, firebase_user, auth_header, order_request, fake_db):
        body = {**order_request, 'items': [], 'payment_method': 'cheque'}

        response = post_json(client, '/api/orders/', body, **auth_header)

        assert response.status_code == 400
        payload = response.json()
        assert payload['code'] == 'VALIDATION_ERROR'
        assert {detail['field'] for detail in payload['details']} == {'items', 'payment_method'}
        assert fake_db.docs('orders') == {}

    def test_invalid_item_fields(self, client, service, firebase_user, auth_header, order_request):
        item = {**order_request['items'][0], 'quantity': 0, 'price': -1}
        body = {**order_request, 'items': [item]}

        response = post_json(client, '/api/orders/', body, **auth_header)

        fields = {detail['field'] for detail in response.json()['details']}
        assert fields == {'items[0].quantity', 'items[0].price'}

    def test_short_phone_rejected(self, client, service, firebase_user, auth_header, order_request, address):
        body = {**order_request, 'shipping_address': {**address, 'phone': '0712'}}

        response = post_json(client, '/api/orders/', body, **auth_header)

        assert response.status_code == 400
        assert response.json()['details'][0]['field'] == 'shipping_address.phone'

    @pytest.mark.parametrize('field,value,detail', [
        ('price', float('nan'), 'items[0].price'),
        ('price', float('inf'), 'items[0].price'),
        ('quantity', float('nan'), 'items[0].quantity'),
        ('shipping_cost', float('inf'), 'shipping_cost'),
        ('tax', float('nan'), 'tax'),
        ('discount', float('-inf'), 'discount'),
    ])
    def test_non_finite_numbers_rejected(self, client, service, firebase_user, auth_header, order_request, fake_db,
                                         field, value, detail):
        if detail.startswith('items'):
            body = {**order_request, 'items': [{**order_request['items'][0], field: value}]}
        else:
            body = {**order_request, field: value}

        # json.dumps writes NaN / Infinity literals, which json.loads accepts.
        response = post_json(client, '/api/orders/', body, **auth_header)

        assert response.status_code == 400
        assert [d['field'] for d in response.json()['details']] == [detail]
        assert fake_db.docs('orders') == {}

    def test_malformed_json(self, client, service, firebase_user, auth_header):
        response = client.post('/api/orders/', data='{not json', content_type='application/json', **auth_header)

        assert response.status_code == 400
        assert response.json()['error'] == 'Invalid JSON'


class TestReadViews:

    def test_owner_can_read(self, client, service, firebase_user, auth_header, create_order):
        order = create_order()

        response = client.get(f"/api/orders/{order['id']}/", **auth_header)

        assert response.status_code == 200
        assert response.json()['data']['id'] == order['id']

    def test_other_user_is_forbidden(self, client, service, firebase_user, auth_header, create_order):
        order = create_order(user_id='user-2')

        response = client.get(f"/api/orders/{order['id']}/", **auth_header)

        assert response.status_code == 403
        assert response.json()['error'] == 'Access denied'

    def test_admin_can_read_any_order(self, client, service, admin_user, auth_header, create_order):
        order = create_order(user_id='user-2')

        assert client.get(f"/api/orders/{order['id']}/", **auth_header).status_code == 200

    def test_missing_order(self, client, service, firebase_user, auth_header):
        response = client.get('/api/orders/missing/', **auth_header)

        assert response.status_code == 404

    def test_by_number(self, client, service, firebase_user, auth_header, create_order):
        order = create_order()

        response = client.get(f"/api/orders/number/{order['order_number']}/", **auth_header)
        assert response.json()['data']['id'] == order['id']

        assert client.get('/api/orders/number/ORD-0000000000/', **auth_header).status_code == 404

    def test_my_orders_clamps_limit(self, client, service, firebase_user, auth_header, create_order):
        create_order()
        create_order(user_id='user-2')

        with patch.object(service, 'get_user_orders', wraps=service.get_user_orders) as get_user_orders:
            response = client.get('/api/orders/my-orders/?limit=500', **auth_header)

        assert response.status_code == 200
        assert response.json()['total'] == 1
        get_user_orders.assert_called_once_with('user-1', 100, None)

    def test_my_orders_rejects_bad_limit(self, client, service, firebase_user, auth_header):
        assert client.get('/api/orders/my-orders/?limit=abc', **auth_header).status_code == 400


class TestCancelView:

    def test_owner_cancels(self, client, service, firebase_user, auth_header, create_order):
        order = create_order()

        response = post_json(client, f"/api/orders/{order['id']}/cancel/", {'reason': 'Ordered twice'},
                             method='patch', **auth_header)

        assert response.status_code == 200
        assert response.json()['data']['status'] == 'cancelled'
        assert response.json()['data']['cancellation_reason'] == 'Ordered twice'

    def test_other_user_cannot_cancel(self, client, service, firebase_user, auth_header, create_order):
        order = create_order(user_id='user-2')

        response = post_json(client, f"/api/orders/{order['id']}/cancel/", {}, **auth_header)

        assert response.status_code == 403
        assert service.get_order(order['id'])['status'] == 'pending'

    def test_shipped_order_cannot_be_cancelled(self, client, service, order_repo, firebase_user, auth_header,
                                               create_order):
        order = create_order()
        order_repo.update_status(order['id'], 'shipped')

        response = post_json(client, f"/api/orders/{order['id']}/cancel/", {}, **auth_header)

        assert response.status_code == 400
        assert response.json()['error'] == 'Order cannot be cancelled at this stage'


class TestAdminViews:

    def test_non_admin_is_rejected(self, client, service, firebase_user, auth_header, create_order):
        order = create_order()

        response = post_json(client, f"/api/admin/orders/{order['id']}/status/", {'status': 'confirmed'},
                             method='patch', **auth_header)

        assert response.status_code == 403
        assert response.json()['error'] == 'Admin access required'

    def test_status_update(self, client, service, admin_user, auth_header, create_order):
        order = create_order()

        response = post_json(client, f"/api/admin/orders/{order['id']}/status/",
                             {'status': 'confirmed', 'reason': 'Manual check'}, method='patch', **auth_header)

        assert response.status_code == 200
        assert response.json()['message'] == 'Order status updated to confirmed'
        assert response.json()['data']['status_history']['confirmed']['reason'] == 'Manual check'

    def test_disallowed_transition(self, client, service, admin_user, auth_header, create_order):
        order = create_order()

        response = post_json(client, f"/api/admin/orders/{order['id']}/status/", {'status': 'delivered'},
                             method='patch', **auth_header)

        assert response.status_code == 400
        assert response.json()['error'] == 'Cannot transition from pending to delivered'
        assert response.json()['code'] == 'INVALID_STATE'

    @pytest.mark.parametrize('status', ['failed', 'refunded', 'lost'])
    def test_status_outside_admin_set(self, client, service, admin_user, auth_header, create_order, status):
        order = create_order()

        response = post_json(client, f"/api/admin/orders/{order['id']}/status/", {'status': status},
                             method='patch', **auth_header)

        assert response.status_code == 400
        assert response.json()['code'] == 'VALIDATION_ERROR'

    def test_shipping_update(self, client, service, admin_user, auth_header, create_order):
        order = create_order()

        response = post_json(client, f"/api/admin/orders/{order['id']}/shipping/",
                             {'shipping_status': 'shipped', 'tracking_number': 'TRK-9'}, method='patch', **auth_header)

        assert response.status_code == 200
        assert response.json()['data']['tracking_number'] == 'TRK-9'

    def test_soft_delete(self, client, service, admin_user, auth_header, create_order):
        order = create_order()

        response = client.delete(f"/api/admin/orders/{order['id']}/", **auth_header)

        assert response.status_code == 200
        assert response.json()['data']['is_deleted'] is True

    def test_list_and_analytics(self, client, service, admin_user, auth_header, create_order):
        create_order()
        create_order(user_id='user-2')

        listed = client.get('/api/admin/orders/?user_id=user-2', **auth_header).json()
        assert listed['total'] == 1

        analytics = client.get('/api/admin/orders/analytics/', **auth_header).json()['data']
        assert analytics['total_orders'] == 2

    def test_bad_date_filter(self, client, service, admin_user, auth_header):
        response = client.get('/api/admin/orders/?date_from=yesterday', **auth_header)

        assert response.status_code == 400


class TestPaymentWebhook:

    def test_success_event(self, client, service, create_order):
        order = create_order()

        response = post_json(client, '/api/webhooks/payment/', {
            'event': 'payment.success',
            'data': {'order_id': order['id'], 'transaction_id': 'tx-1', 'amount': 245, 'method': 'card'},
        })

        assert response.json() == {'received': True}
        assert service.get_order(order['id'])['payment_status'] == 'paid'

    def test_failed_event(self, client, service, create_order):
        order = create_order()

        post_json(client, '/api/webhooks/payment/', {'event': 'payment.failed', 'data': {'order_id': order['id']}})

        assert service.get_order(order['id'])['status'] == 'failed'

    def test_unknown_event_is_ignored(self, client, service):
        response = post_json(client, '/api/webhooks/payment/', {'event': 'payment.pending', 'data': {}})

        assert response.json() == {'received': True}

    def test_processing_error(self, client, service):
        response = post_json(client, '/api/webhooks/payment/', {
            'event': 'payment.success', 'data': {'order_id': 'missing'},
        })

        assert response.status_code == 500


@pytest.mark.parametrize('error,status', [
    (NotFoundError('Order not found'), 404),
    (PermissionDeniedError('Access denied'), 403),
    (InvalidStateError('Order cannot be cancelled at this stage'), 400),
])
def test_service_errors_map_to_status_codes(client, firebase_user, auth_header, error, status):
    with patch('orders.views.get_order_service') as get_service:
        get_service.return_value.get_order_for_user.side_effect = error
        response = client.get('/api/orders/order-1/', **auth_header)

    assert response.status_code == status
    assert response.json()['error'] == str(error)
