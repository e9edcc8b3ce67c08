"""Unit tests for activity_ledger.services.activity.redaction."""
import pytest

from activity_ledger.services.activity.redaction import REDACTED, is_sensitive, redact


@pytest.mark.parametrize(
    "key",
    ["password", "newPassword", "client_secret", "accessToken", "Authorization",
     "apiKey", "API_KEY", "cardNumber", "ssn"],
)
def test_sensitive_keys_match_case_insensitively(key):
    assert is_sensitive(key)


@pytest.mark.parametrize("key", ["note", "total", "orderId", "email"])
def test_ordinary_keys_do_not_match(key):
    assert not is_sensitive(key)


def test_top_level_values_are_replaced():
    assert redact({"password": "x", "note": "y"}) == {"password": REDACTED, "note": "y"}


def test_nested_mappings_and_lists_are_walked():
    value = {
        "user": {"name": "kim", "token": "abc"},
        "cards": "ignored-because-key-matches",
        "items": [{"sku": "A1", "secret": 1}, {"sku": "B2"}],
    }
    assert redact(value) == {
        "user": {"name": "kim", "token": REDACTED},
        "cards": REDACTED,
        "items": [{"sku": "A1", "secret": REDACTED}, {"sku": "B2"}],
    }


def test_whole_subtree_under_sensitive_key_is_replaced():
    assert redact({"auth": {"user": "a", "pass": "b"}}) == {"auth": REDACTED}


def test_scalars_pass_through():
    assert redact("password") == "password"
    assert redact(5) == 5
    assert redact(None) is None


def test_input_is_not_mutated():
    original = {"password": "x", "nested": {"token": "t"}}
    redact(original)
    assert original == {"password": "x", "nested": {"token": "t"}}
