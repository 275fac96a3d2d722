from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import NetworkTimeout, OperationFailure, ServerSelectionTimeoutError

from config import load_settings
from database import storage_guard, to_storage_time
from errors import ConfigurationError, NotFoundError, RetryableError, StorageError


@pytest.mark.parametrize("error", [ServerSelectionTimeoutError("no servers"), NetworkTimeout("slow")])
def test_timeouts_are_retryable(settings, error):
    with pytest.raises(RetryableError):
        with storage_guard("load booking", settings):
            raise error


def test_driver_failures_become_storage_errors(settings):
    with pytest.raises(StorageError) as info:
        with storage_guard("create booking", settings):
            raise OperationFailure("not authorized", code=13)

    assert not isinstance(info.value, RetryableError)
    assert info.value.message == "Could not create booking"


def test_domain_errors_pass_through(settings):
    with pytest.raises(NotFoundError):
        with storage_guard("load booking", settings):
            raise NotFoundError("Booking not found")


def test_storage_time_is_naive_utc_milliseconds():
    ist = timezone(timedelta(hours=5, minutes=30))
    value = to_storage_time(datetime(2025, 1, 10, 15, 30, 0, 123456, tzinfo=ist))

    assert value == datetime(2025, 1, 10, 10, 0, 0, 123000)
    assert value.tzinfo is None


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("STORAGE_TIMEOUT", "2.5")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_live_x")

    settings = load_settings()

    assert settings.storage_timeout == 2.5
    assert settings.cors_origins == ["https://a.example", "https://b.example"]
    assert settings.checkout_key_id == "rzp_live_x"


@pytest.mark.parametrize("value", ["soon", "-1"])
def test_bad_settings_are_configuration_errors(monkeypatch, value):
    monkeypatch.setenv("STORAGE_TIMEOUT", value)

    with pytest.raises(ConfigurationError):
        load_settings()
