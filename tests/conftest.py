import asyncio

import pytest

from tablecrm_pos.api.sources import MockDataSource
from tablecrm_pos.db.sqlite import TokenStore
from tablecrm_pos.models import Contragent, Product
from tablecrm_pos.services.order_form import OrderFormController


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pos.db")


@pytest.fixture
def token_store(db_path):
    return TokenStore(db_path=db_path)


@pytest.fixture
def mock_source():
    return MockDataSource(delay=0, submit_delay=0)


@pytest.fixture
def controller(mock_source, token_store):
    return OrderFormController(mock_source, token_store, client_debounce=0, product_debounce=0)


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def product():
    return Product(id="p1", name="Чайник", sku="CH-1", price=100.0, rest=5)


@pytest.fixture
def client_ivan():
    return Contragent(id="c1", name="Ivan Petrov", phone="+7 (999) 111-22-33")
