import pytest
from pydantic import ValidationError

from fulfillment.config import Settings


def test_defaults_keep_order_expiry_after_session_expiry():
    settings = Settings(_env_file=None)

    assert settings.order_expiration_minutes > settings.payment_session_expiry_minutes


def test_order_expiry_must_outlast_payment_session():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ORDER_EXPIRATION_MINUTES=30, PAYMENT_SESSION_EXPIRY_MINUTES=30)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ORDER_EXPIRATION_MINUTES", "90")
    monkeypatch.setenv("PAYMENT_SESSION_EXPIRY_MINUTES", "45")
    monkeypatch.setenv("STORE_CURRENCY", "USD")

    settings = Settings(_env_file=None)

    assert settings.order_expiration_minutes == 90
    assert settings.payment_session_expiry_minutes == 45
    assert settings.currency == "USD"


def test_currency_must_be_iso_code():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, STORE_CURRENCY="euro")
