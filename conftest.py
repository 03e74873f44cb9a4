import pytest
from app import app as flask_app, init_bill_splitter
from config import TestingConfig
from bill_splitting_logic import BillSplitter
from models import ChargeConfig


@pytest.fixture(scope='session')
def app():
    # Configure the app for testing
    flask_app.config.from_object(TestingConfig)
    yield flask_app


@pytest.fixture(scope='function')
def splitter(app):
    """Fresh session bill for each test function"""
    return init_bill_splitter(app)


@pytest.fixture(scope='function')
def client(app, splitter):
    return app.test_client()


@pytest.fixture
def dinner():
    """The two-person dinner: salmon for Alice, salad for Bob, 15% VAT, 10% service"""
    splitter = BillSplitter(charges=ChargeConfig.from_raw(vat_rate=15, service_charge_rate=10))
    alice = splitter.add_participant("Alice")
    bob = splitter.add_participant("Bob")
    splitter.add_item("Grilled Salmon", 28.50, assigned_to=[alice.id])
    splitter.add_item("Caesar Salad", 12.00, assigned_to=[bob.id])
    return splitter
