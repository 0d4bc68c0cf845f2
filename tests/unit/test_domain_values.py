# tests/unit/test_domain_values.py

from datetime import date, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from src.domain.idempotency import payment_idempotency_key
from src.domain.money import format_amount, from_minor_units, to_minor_units
from src.domain.passengers import count_by_type, dump_passengers, load_passengers, passenger_list_adapter


# ---------------------
# MONEY
# ---------------------

def test_decimal_amount_to_minor_units():
    assert to_minor_units("500.00", "USD") == 50000
    assert to_minor_units("0.015", "EUR") == 2


def test_zero_decimal_currency():
    assert to_minor_units("12000", "JPY") == 12000
    assert format_amount(12000, "jpy") == "12000 JPY"


def test_three_decimal_currency():
    assert to_minor_units("1.234", "KWD") == 1234
    assert from_minor_units(1234, "KWD") == Decimal("1.234")


def test_format_amount():
    assert format_amount(52500, "USD") == "525.00 USD"


def test_invalid_amount_raises_value_error():
    with pytest.raises(ValueError):
        to_minor_units("five hundred", "USD")


# ---------------------
# IDEMPOTENCY KEY
# ---------------------

def test_idempotency_key_is_deterministic():
    booking_id = "0b8f2a3c-1d2e-4f50-8a9b-0c1d2e3f4a5b"

    assert payment_idempotency_key(booking_id) == payment_idempotency_key(booking_id)
    assert payment_idempotency_key(booking_id) == "booking-0b8f2a3c1d2e4f508a9b0c1d2e3f4a5b"
    assert len(payment_idempotency_key(booking_id)) <= 40


def test_idempotency_key_requires_booking_id():
    with pytest.raises(ValueError):
        payment_idempotency_key("")


# ---------------------
# PASSENGERS
# ---------------------

ADULT = {
    "type": "adult",
    "title": "mr",
    "given_name": "Tony",
    "family_name": "Stark",
    "born_on": "1980-05-29",
}
CHILD = {
    "type": "child",
    "given_name": "Morgan",
    "family_name": "Stark",
    "born_on": "2019-01-01",
}


def test_passenger_variants_are_discriminated():
    passengers = passenger_list_adapter.validate_python([ADULT, CHILD])

    assert [p.type for p in passengers] == ["adult", "child"]
    assert count_by_type(passengers) == {"adult": 1, "child": 1, "infant": 0}


def test_adult_requires_title():
    without_title = {key: value for key, value in ADULT.items() if key != "title"}

    with pytest.raises(ValidationError):
        passenger_list_adapter.validate_python([without_title])


def test_unknown_passenger_fields_rejected():
    with pytest.raises(ValidationError):
        passenger_list_adapter.validate_python([{**CHILD, "loyalty_tier": "gold"}])


def test_future_birth_date_rejected():
    tomorrow = (date.today() + timedelta(days=1)).isoformat()

    with pytest.raises(ValidationError):
        passenger_list_adapter.validate_python([{**ADULT, "born_on": tomorrow}])


def test_manifest_survives_storage():
    passengers = passenger_list_adapter.validate_python([ADULT, CHILD])

    restored = load_passengers(dump_passengers(passengers))

    assert restored == passengers
    assert load_passengers(None) == []


def test_provider_payload_includes_identity_document():
    adult = passenger_list_adapter.validate_python(
        [
            {
                **ADULT,
                "identity_document": {
                    "unique_identifier": "X1234567",
                    "issuing_country_code": "us",
                    "expires_on": "2031-01-01",
                },
            }
        ]
    )[0]

    payload = adult.to_provider_payload()

    assert payload["title"] == "mr"
    assert payload["born_on"] == "1980-05-29"
    assert payload["identity_documents"][0]["issuing_country_code"] == "US"
