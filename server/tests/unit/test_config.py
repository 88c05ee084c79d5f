"""Unit tests for settings parsing."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from reservation_api.core.config import Settings


def test_comma_separated_lists_are_split():
    config = Settings(payment_methods="GCASH, QR_CODE,", cors_origins="http://a.test")
    assert config.payment_methods == ["GCASH", "QR_CODE"]
    assert config.cors_origins == ["http://a.test"]


def test_comma_separated_list_from_environment(monkeypatch):
    monkeypatch.setenv("PAYMENT_METHODS", "CREDIT_CARD,GCASH")
    assert Settings().payment_methods == ["CREDIT_CARD", "GCASH"]


def test_environment_and_log_level_are_normalised():
    config = Settings(environment="Production", log_level="debug")
    assert config.is_production
    assert not config.debug
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize("field,value", [
    ("environment", "qa"),
    ("log_level", "LOUD"),
    ("tax_rate", Decimal("1")),
    ("processing_fee_rate", Decimal("-0.01")),
    ("gateway_timeout_seconds", 0),
])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})
