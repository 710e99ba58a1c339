from unittest.mock import Mock, patch

import pytest

from orders.repositories import OrderRepository
from orders.services import OrderService
from payments.config import MpesaConfig
from payments.repositories import TransactionRepository
from shop_backend.side_effects import dispatch
from tests.fakes import FakeFirestore


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def order_repo(fake_db):
    return OrderRepository(db=fake_db)


@pytest.fixture
def transaction_repo(fake_db):
    return TransactionRepository(db=fake_db)


@pytest.fixture
def inventory():
    gateway = Mock()
    gateway.validate.return_value = None
    return gateway


@pytest.fixture
def notifications():
    return Mock()


@pytest.fixture
def refunds():
    return Mock()


@pytest.fixture
def events():
    return Mock()


@pytest.fixture
def order_service(order_repo, inventory, notifications, refunds, events):
    return OrderService(
        repository=order_repo,
        inventory=inventory,
        notifications=notifications,
        refunds=refunds,
        events=events,
        dispatcher=dispatch,
    )


@pytest.fixture
def address():
    return {
        'street': '12 Moi Avenue',
        'city': 'Nairobi',
        'state': 'Nairobi',
        'country': 'Kenya',
        'postal_code': '00100',
        'phone': '0712345678',
    }


@pytest.fixture
def order_request(address):
    return {
        'user_id': 'user-1',
        'items': [{
            'product_id': 'prod-1',
            'sku': 'SKU-1',
            'name': 'Kikoi scarf',
            'quantity': 2,
            'price': 100,
            'discount': 0,
            'tax': 0,
        }],
        'shipping_address': address,
        'payment_method': 'mpesa',
        'shipping_method': 'standard',
        'shipping_cost': 50,
        'discount': 10,
        'tax': 5,
        'currency': 'KES',
    }


@pytest.fixture
def create_order(order_service, order_request):
    def _create(**overrides):
        return order_service.create_order({**order_request, **overrides})
    return _create


def make_mpesa_config(environment='sandbox'):
    return MpesaConfig(
        environment=environment,
        consumer_key='key',
        consumer_secret='secret',
        short_code='174379',
        pass_key='passkey',
        initiator_name='testapi',
        initiator_password='initiator-pass',
        callback_url='https://example.test',
    )


@pytest.fixture
def mpesa_config():
    return make_mpesa_config()


@pytest.fixture
def firebase_user():
    """Patches token verification; set `.return_value` claims per test."""
    with patch('shop_backend.auth.verify_firebase_token') as verify:
        verify.return_value = {'uid': 'user-1', 'email': 'buyer@example.com'}
        yield verify


@pytest.fixture
def auth_header():
    return {'HTTP_AUTHORIZATION': 'Bearer test-token'}
