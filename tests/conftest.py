import pytest
from django.core.cache import cache

from payments.services.stk import initiate_payment
from tests.factories import FakeGateway


@pytest.fixture(autouse=True)
def mpesa_settings(settings):
    settings.MPESA_ENV = "sandbox"
    settings.MPESA_BASE_URL = ""
    settings.MPESA_CONSUMER_KEY = "test-consumer-key"
    settings.MPESA_CONSUMER_SECRET = "test-consumer-secret"
    settings.MPESA_SHORTCODE = "174379"
    settings.MPESA_PASSKEY = "test-passkey"
    settings.MPESA_CALLBACK_BASE_URL = "https://careflow.example.com"
    settings.MPESA_TOKEN_EXPIRY_MARGIN = 60
    settings.MPESA_HTTP_TIMEOUT = 30
    settings.MPESA_MAX_AMOUNT = 250000
    settings.SUBSCRIPTION_PERIOD_DAYS = 30
    settings.TRIAL_PERIOD_DAYS = 30
    return settings


@pytest.fixture(autouse=True)
def clear_token_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def pending_transaction(db, gateway):
    return initiate_payment(
        gateway,
        phone_number="0722000000",
        amount=2000,
        plan="Nairobi Basic",
        user_id="P-001",
        user_type="patient",
    )
