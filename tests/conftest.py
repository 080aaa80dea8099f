import jwt
import pytest
from django.test import Client

from orders import services
from tests.fakes import InMemoryOrderStore, make_user

JWT_SECRET = 'test-secret-for-bearer-tokens-0123456789'


@pytest.fixture(autouse=True)
def jwt_secret(settings):
    settings.JWT_SECRET = JWT_SECRET
    return JWT_SECRET


@pytest.fixture
def customer():
    return make_user(role='customer', first_name='Ada', last_name='Lovelace',
                     email='ada@example.com', phone='+44 20 7946 0000')


@pytest.fixture
def admin():
    return make_user(role='admin', first_name='Grace', last_name='Hopper', email='grace@example.com')


@pytest.fixture
def store(monkeypatch, customer, admin):
    fake = InMemoryOrderStore(users=[customer, admin])
    monkeypatch.setattr(services, 'get_order_store', lambda: fake)
    return fake


def bearer(user, secret=JWT_SECRET):
    token = jwt.encode({'id': str(user.id)}, secret, algorithm='HS256')
    return {'HTTP_AUTHORIZATION': f'Bearer {token}'}


@pytest.fixture
def client():
    return Client()
