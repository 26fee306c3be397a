"""Tests for settings loading."""

from decimal import Decimal

import pydantic
import pytest

from order_service.config import Settings, get_settings


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


def test_env_overrides(monkeypatch, fresh_settings):
    monkeypatch.setenv("ORDER_TX_MODE", "saga")
    monkeypatch.setenv("TAX_RATE", "0.10")
    monkeypatch.setenv("RESTOCK_ON_CANCEL", "false")

    settings = fresh_settings()

    assert settings.order_tx_mode == "saga"
    assert settings.tax_rate == Decimal("0.10")
    assert settings.restock_on_cancel is False


def test_unknown_tx_mode_fails_at_load(monkeypatch, fresh_settings):
    monkeypatch.setenv("ORDER_TX_MODE", "sagas")

    with pytest.raises(pydantic.ValidationError):
        fresh_settings()


def test_unknown_tx_mode_rejected_directly():
    with pytest.raises(pydantic.ValidationError):
        Settings(order_tx_mode="eventual")
